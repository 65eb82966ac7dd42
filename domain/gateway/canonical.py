"""
Canonical string construction.

The canonical string is the exact byte sequence a gateway hashes. Building it
is pure: no clock, no locale, values are used verbatim.
"""
from __future__ import annotations

from typing import Mapping

from domain.common.exceptions import DomainValidationException
from domain.gateway.profile import (
    FieldOrdering,
    FieldRendering,
    KeyCase,
    ProviderProfile,
    SecretPlacement,
)


FieldSet = Mapping[str, str]


class CanonicalizationError(DomainValidationException):
    def __init__(self, message: str, *, profile: str, keys: list[str]):
        super().__init__(message, field="fields", details={"profile": profile, "keys": keys})


def _ordered(fields: dict[str, str], profile: ProviderProfile) -> list[tuple[str, str]]:
    if profile.ordering is FieldOrdering.DECLARED:
        # missing declared fields sign as empty strings
        return [(name, fields.get(name, "")) for name in profile.signed_fields or ()]

    if profile.ordering is FieldOrdering.KEY_ORDINAL:
        return sorted(fields.items(), key=lambda item: item[0])

    seen: dict[str, str] = {}
    for key in fields:
        folded = key.lower()
        if folded in seen:
            raise CanonicalizationError(
                f"Fields '{seen[folded]}' and '{key}' collide when compared case-insensitively",
                profile=profile.name,
                keys=[seen[folded], key],
            )
        seen[folded] = key
    return sorted(fields.items(), key=lambda item: item[0].lower())


def _render(key: str, value: str, profile: ProviderProfile) -> str:
    if profile.rendering is FieldRendering.VALUE_ONLY:
        return value
    name = key.upper() if profile.key_case is KeyCase.UPPER else key
    return f"{name}={value}"


def canonicalize(fields: FieldSet, profile: ProviderProfile, secret: str = "") -> str:
    """Build the canonical string for ``fields`` under ``profile``.

    Filters out the signature field and anything the profile excludes, orders
    the remaining fields, renders them and places the secret. HMAC profiles
    never embed the secret; it becomes the MAC key in ``sign``.
    """
    selected = {k: v for k, v in fields.items() if profile.includes(k, v)}
    segments = [_render(k, v, profile) for k, v in _ordered(selected, profile)]

    placement = profile.secret_placement
    if placement is SecretPlacement.PER_FIELD:
        return profile.separator.join(segment + secret for segment in segments)
    if placement is SecretPlacement.PREFIX:
        segments.insert(0, secret)
    elif placement is SecretPlacement.SUFFIX:
        segments.append(secret)
    return profile.separator.join(segments)
