"""Gateway integrity domain exports."""
from .canonical import CanonicalizationError, FieldSet, canonicalize
from .profile import (
    AmountUnit,
    DigestEncoding,
    Environment,
    FieldOrdering,
    FieldRendering,
    HashAlgorithm,
    KeyCase,
    ProviderProfile,
    SecretPlacement,
    environment_for,
)
from .signature import secrets_match, sign, verify

__all__ = [
    "AmountUnit",
    "CanonicalizationError",
    "DigestEncoding",
    "Environment",
    "FieldOrdering",
    "FieldRendering",
    "FieldSet",
    "HashAlgorithm",
    "KeyCase",
    "ProviderProfile",
    "SecretPlacement",
    "canonicalize",
    "environment_for",
    "secrets_match",
    "sign",
    "verify",
]
