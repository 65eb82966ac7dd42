"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class OrderPaymentNotFoundException(BusinessException):
    def __init__(self, order_id: Optional[str] = None):
        details = {"order_id": order_id} if order_id else None
        super().__init__(
            code=BusinessCode.ORDER_PAYMENT_NOT_FOUND,
            message="Order payment not found",
            error_type="OrderPaymentNotFound",
            details=details,
        )


class OrderPaymentAlreadyExistsException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.ORDER_PAYMENT_ALREADY_EXISTS,
            message=f"Order {order_id} already has a payment",
            error_type="OrderPaymentAlreadyExists",
            details={"order_id": order_id},
            field="order_id",
        )


class UnsupportedProviderException(BusinessException):
    def __init__(self, provider: str):
        super().__init__(
            code=BusinessCode.UNSUPPORTED_PROVIDER,
            message=f"Unsupported payment provider: {provider}",
            error_type="UnsupportedProvider",
            details={"provider": provider},
            field="provider",
        )


class UntrustedCallbackException(BusinessException):
    """回调未通过签名或归属校验，必须丢弃"""
