"""
Exceptions for payment providers mapped to unified BusinessException variants.

Outbound operations convert these into ``OperationResult.failure``; callback
parsing lets ``PaymentSignatureError`` propagate so the caller can discard the
notification.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException, UntrustedCallbackException
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(BusinessException):
    """The gateway answered, but reported an error."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=full_details,
        )
        self.provider_code = provider_code


class PaymentResponseError(BusinessException):
    """The gateway answer could not be parsed or lacks mandatory fields."""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.RESPONSE_ERROR,
            message=message,
            error_type="PaymentResponseError",
            details=full_details,
        )


class PaymentSignatureError(UntrustedCallbackException):
    """A callback or response failed signature verification."""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=full_details,
        )
