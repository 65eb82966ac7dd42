"""
Static provider profiles.

Module-level, immutable data: profiles are shared by every request and
never mutated after import.
"""
from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from domain.common.exceptions import UnsupportedProviderException
from domain.gateway.profile import (
    AmountUnit,
    DigestEncoding,
    Environment,
    FieldOrdering,
    FieldRendering,
    HashAlgorithm,
    KeyCase,
    ProviderProfile,
    SecretPlacement,
)


def _endpoints(test: dict[str, str], live: dict[str, str]) -> Mapping[Environment, Mapping[str, str]]:
    return MappingProxyType(
        {Environment.TEST: MappingProxyType(test), Environment.LIVE: MappingProxyType(live)}
    )


def _ogone_endpoints(env: str) -> dict[str, str]:
    base = f"https://secure.ogone.com/ncol/{env}/"
    return {
        "form": base + "orderstandard_utf8.asp",
        "status": base + "querydirect.asp",
        "maintenance": base + "maintenancedirect.asp",
    }


OGONE = ProviderProfile(
    name="ogone",
    hash_algorithm=HashAlgorithm.SHA512,
    secret_placement=SecretPlacement.PER_FIELD,
    digest_encoding=DigestEncoding.HEX_UPPER,
    signature_field="SHASIGN",
    ordering=FieldOrdering.KEY_CASE_INSENSITIVE,
    key_case=KeyCase.UPPER,
    skip_empty_values=True,
    endpoints=_endpoints(_ogone_endpoints("test"), _ogone_endpoints("prod")),
    recovers_from_error_on_status_poll=True,
)

BUCKAROO = ProviderProfile(
    name="buckaroo",
    hash_algorithm=HashAlgorithm.SHA1,
    secret_placement=SecretPlacement.SUFFIX,
    digest_encoding=DigestEncoding.HEX_LOWER,
    signature_field="brq_signature",
    ordering=FieldOrdering.KEY_CASE_INSENSITIVE,
    include_prefixes=("brq", "add", "cust"),
    endpoints=_endpoints(
        {"form": "https://testcheckout.buckaroo.nl/html/", "api": "https://testcheckout.buckaroo.nl/nvp/"},
        {"form": "https://checkout.buckaroo.nl/html/", "api": "https://checkout.buckaroo.nl/nvp/"},
    ),
    recovers_from_error_on_status_poll=True,
)

_WANNAFIND_WINDOW = {"form": "https://betaling.wannafind.dk/paymentwindow.php"}

WANNAFIND_REQUEST = ProviderProfile(
    name="wannafind",
    hash_algorithm=HashAlgorithm.MD5,
    secret_placement=SecretPlacement.SUFFIX,
    digest_encoding=DigestEncoding.HEX_LOWER,
    signature_field="checkmd5",
    ordering=FieldOrdering.DECLARED,
    rendering=FieldRendering.VALUE_ONLY,
    signed_fields=("currency", "orderid", "amount", "cardtype"),
    endpoints=_endpoints(_WANNAFIND_WINDOW, _WANNAFIND_WINDOW),
    amount_unit=AmountUnit.MINOR,
)

# the callback signs the same values in a different order
WANNAFIND_CALLBACK = ProviderProfile(
    name="wannafind",
    hash_algorithm=HashAlgorithm.MD5,
    secret_placement=SecretPlacement.SUFFIX,
    digest_encoding=DigestEncoding.HEX_LOWER,
    signature_field="checkmd5callback",
    ordering=FieldOrdering.DECLARED,
    rendering=FieldRendering.VALUE_ONLY,
    signed_fields=("orderid", "currency", "cardtype", "amount"),
    endpoints=_endpoints(_WANNAFIND_WINDOW, _WANNAFIND_WINDOW),
    amount_unit=AmountUnit.MINOR,
)

_TWOCHECKOUT_FORM = {"form": "https://www.2checkout.com/checkout/spurchase"}

TWOCHECKOUT = ProviderProfile(
    name="twocheckout",
    hash_algorithm=HashAlgorithm.MD5,
    secret_placement=SecretPlacement.PREFIX,
    digest_encoding=DigestEncoding.HEX_UPPER,
    signature_field="key",
    ordering=FieldOrdering.DECLARED,
    rendering=FieldRendering.VALUE_ONLY,
    signed_fields=("sid", "order_number", "total"),
    endpoints=_endpoints(_TWOCHECKOUT_FORM, _TWOCHECKOUT_FORM),
)

WORLDPAY = ProviderProfile(
    name="worldpay",
    hash_algorithm=HashAlgorithm.MD5,
    secret_placement=SecretPlacement.PREFIX,
    digest_encoding=DigestEncoding.HEX_LOWER,
    signature_field="signature",
    ordering=FieldOrdering.DECLARED,
    rendering=FieldRendering.VALUE_ONLY,
    separator=":",
    signed_fields=("amount", "currency", "instId", "cartId"),
    endpoints=_endpoints(
        {"form": "https://secure-test.worldpay.com/wcc/purchase"},
        {"form": "https://secure.worldpay.com/wcc/purchase"},
    ),
)

_MOLLIE_API = {"api": "https://secure.mollie.nl/xml/ideal"}

MOLLIE = ProviderProfile(
    name="mollie",
    hash_algorithm=HashAlgorithm.SHA256,
    secret_placement=SecretPlacement.HMAC_KEY,
    digest_encoding=DigestEncoding.BASE64,
    signature_field="hash",
    ordering=FieldOrdering.DECLARED,
    rendering=FieldRendering.VALUE_ONLY,
    signed_fields=("partnerid", "profile_key", "cartNumber"),
    endpoints=_endpoints(_MOLLIE_API, _MOLLIE_API),
    amount_unit=AmountUnit.MINOR,
)

# Klarna signs the raw JSON body followed by the shared secret.
KLARNA = ProviderProfile(
    name="klarna",
    hash_algorithm=HashAlgorithm.SHA256,
    secret_placement=SecretPlacement.SUFFIX,
    digest_encoding=DigestEncoding.BASE64,
    ordering=FieldOrdering.DECLARED,
    rendering=FieldRendering.VALUE_ONLY,
    signed_fields=("body",),
    endpoints=_endpoints(
        {"orders": "https://checkout.testdrive.klarna.com/checkout/orders"},
        {"orders": "https://checkout.klarna.com/checkout/orders"},
    ),
    amount_unit=AmountUnit.MINOR,
    minor_unit_factor=Decimal(100),
)


PROFILES: Mapping[str, ProviderProfile] = MappingProxyType(
    {
        "ogone": OGONE,
        "buckaroo": BUCKAROO,
        "wannafind": WANNAFIND_CALLBACK,
        "twocheckout": TWOCHECKOUT,
        "worldpay": WORLDPAY,
        "mollie": MOLLIE,
        "klarna": KLARNA,
    }
)


def get_profile(name: str) -> ProviderProfile:
    try:
        return PROFILES[name.lower()]
    except KeyError:
        raise UnsupportedProviderException(name) from None
