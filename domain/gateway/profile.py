"""
Provider profile value objects.

A ProviderProfile is the declarative description of one gateway's signing
conventions: which fields are signed, in which order, how they are rendered,
where the shared secret goes, which hash is used and how the digest is
encoded. Profiles are immutable and safe to share between requests.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional


class HashAlgorithm(str, Enum):
    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA512 = "sha512"


class SecretPlacement(str, Enum):
    SUFFIX = "suffix"        # once, after the last field
    PREFIX = "prefix"        # once, before the first field
    PER_FIELD = "per_field"  # after every rendered field
    HMAC_KEY = "hmac_key"    # used as the HMAC key, not concatenated
    NONE = "none"


class DigestEncoding(str, Enum):
    HEX_LOWER = "hex_lower"
    HEX_UPPER = "hex_upper"
    BASE64 = "base64"


class FieldOrdering(str, Enum):
    KEY_CASE_INSENSITIVE = "key_case_insensitive"
    KEY_ORDINAL = "key_ordinal"
    DECLARED = "declared"


class KeyCase(str, Enum):
    AS_IS = "as_is"
    UPPER = "upper"


class FieldRendering(str, Enum):
    KEY_VALUE = "key_value"
    VALUE_ONLY = "value_only"


class AmountUnit(str, Enum):
    MAJOR = "major"  # 49.99
    MINOR = "minor"  # 4999


class Environment(str, Enum):
    TEST = "test"
    LIVE = "live"


@dataclass(frozen=True)
class ProviderProfile:
    """Static signing and endpoint conventions of a single gateway.

    ``signed_fields`` restricts the signed set to an explicit list and, with
    ``FieldOrdering.DECLARED``, also fixes the order. ``include_prefixes`` is
    matched case-insensitively. The ``signature_field`` is never signed.
    """

    name: str
    hash_algorithm: HashAlgorithm
    secret_placement: SecretPlacement
    digest_encoding: DigestEncoding = DigestEncoding.HEX_LOWER
    signature_field: str = ""
    ordering: FieldOrdering = FieldOrdering.KEY_CASE_INSENSITIVE
    key_case: KeyCase = KeyCase.AS_IS
    rendering: FieldRendering = FieldRendering.KEY_VALUE
    separator: str = ""
    include_prefixes: tuple[str, ...] = ()
    exclude_keys: frozenset[str] = frozenset()
    signed_fields: Optional[tuple[str, ...]] = None
    skip_empty_values: bool = False
    endpoints: Mapping[Environment, Mapping[str, str]] = field(default_factory=dict)
    amount_unit: AmountUnit = AmountUnit.MAJOR
    minor_unit_factor: Decimal = Decimal(100)
    amount_scale: int = 2
    recovers_from_error_on_status_poll: bool = False

    def __post_init__(self) -> None:
        if self.ordering is FieldOrdering.DECLARED and not self.signed_fields:
            raise ValueError(f"profile {self.name}: declared ordering requires signed_fields")

    def endpoint(self, operation: str, environment: Environment) -> str:
        try:
            return self.endpoints[environment][operation]
        except KeyError:
            raise KeyError(f"profile {self.name} has no '{operation}' endpoint for {environment.value}") from None

    def is_signature_field(self, key: str) -> bool:
        return bool(self.signature_field) and key.lower() == self.signature_field.lower()

    def includes(self, key: str, value: str) -> bool:
        """Field-inclusion predicate applied before ordering."""
        if self.is_signature_field(key):
            return False
        lowered = key.lower()
        if lowered in {k.lower() for k in self.exclude_keys}:
            return False
        if self.skip_empty_values and value == "":
            return False
        if self.signed_fields is not None:
            return key in self.signed_fields
        if self.include_prefixes:
            return lowered.startswith(tuple(p.lower() for p in self.include_prefixes))
        return True


def environment_for(test_mode: bool) -> Environment:
    return Environment.TEST if test_mode else Environment.LIVE
