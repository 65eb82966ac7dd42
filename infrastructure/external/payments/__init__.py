"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

import httpx

from application.ports.payment_gateway import PaymentGateway
from domain.common.exceptions import UnsupportedProviderException


def get_payment_gateway(
    provider: str,
    *,
    timeouts: Optional[dict[str, float]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PaymentGateway:
    name = provider.lower()
    if name == "ogone":
        from .ogone_client import OgoneClient
        return OgoneClient(timeouts=timeouts, transport=transport)
    if name == "buckaroo":
        from .buckaroo_client import BuckarooClient
        return BuckarooClient(timeouts=timeouts, transport=transport)
    if name == "wannafind":
        from .wannafind_client import WannafindClient
        return WannafindClient(timeouts=timeouts, transport=transport)
    if name in {"twocheckout", "2checkout"}:
        from .twocheckout_client import TwoCheckoutClient
        return TwoCheckoutClient(timeouts=timeouts, transport=transport)
    if name == "worldpay":
        from .worldpay_client import WorldPayClient
        return WorldPayClient(timeouts=timeouts, transport=transport)
    if name in {"mollie", "mollieideal"}:
        from .mollie_client import MollieClient
        return MollieClient(timeouts=timeouts, transport=transport)
    if name == "klarna":
        from .klarna_client import KlarnaClient
        return KlarnaClient(timeouts=timeouts, transport=transport)
    raise UnsupportedProviderException(provider)
