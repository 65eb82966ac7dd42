"""Infrastructure models package exports."""
from .base import Base, TimestampMixin, metadata
from .payment import OrderPaymentModel, PaymentTransitionModel

__all__ = [
    "Base",
    "TimestampMixin",
    "metadata",
    "OrderPaymentModel",
    "PaymentTransitionModel",
]
