"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

from domain.payment.entity import OrderPayment, PaymentState
from domain.payment.reconciliation import MonetaryAmount
from shared.codes.currency_codes import is_iso4217


class RegisterOrderPayment(BaseModel):
    order_id: str = Field(min_length=1, max_length=100)
    provider: str
    amount: condecimal(gt=0, max_digits=15, decimal_places=2)  # type: ignore[valid-type]
    currency: str = Field(default="EUR")
    cart_number: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if not is_iso4217(u):
            raise ValueError("currency must be a supported ISO-4217 alpha-3 code")
        return u

    @field_validator("provider")
    @classmethod
    def _lower_provider(cls, v: str) -> str:
        return v.strip().lower()


class ReturnUrls(BaseModel):
    """Where the gateway sends the customer and its notifications."""
    callback_url: str
    continue_url: str
    cancel_url: Optional[str] = None
    back_url: Optional[str] = None


class PaymentForm(BaseModel):
    provider: str
    action: str
    method: str = "POST"
    fields: dict[str, str] = Field(default_factory=dict)
    snippet: Optional[str] = None  # inline checkout markup (Klarna)
    properties: dict[str, str] = Field(default_factory=dict)  # values to persist on the order


class CallbackRequest(BaseModel):
    """Transport-neutral view of an inbound gateway notification."""
    query: dict[str, str] = Field(default_factory=dict)
    form: dict[str, str] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""
    client_ip: Optional[str] = None

    @property
    def params(self) -> dict[str, str]:
        merged = dict(self.form)
        merged.update(self.query)
        return merged

    def get(self, key: str, default: str = "") -> str:
        params = self.params
        if key in params:
            return params[key]
        lowered = key.lower()
        for name, value in params.items():
            if name.lower() == lowered:
                return value
        return default


class CallbackEvent(BaseModel):
    """A verified gateway notification, ready for reconciliation."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    provider: str
    order_reference: str
    status_code: str
    target_state: Optional[PaymentState] = None
    status_known: bool = True
    reported_amount: Optional[MonetaryAmount] = None
    transaction_id: Optional[str] = None
    card_type: Optional[str] = None
    card_mask: Optional[str] = None
    fields: dict[str, str] = Field(default_factory=dict)


class OperationOutcome(str, Enum):
    SUCCESS = "success"
    NOT_SUPPORTED = "not_supported"
    FAILURE = "failure"


class OperationResult(BaseModel):
    outcome: OperationOutcome
    state: Optional[PaymentState] = None
    transaction_id: Optional[str] = None
    status_code: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def success(
        cls,
        state: Optional[PaymentState],
        transaction_id: Optional[str] = None,
        status_code: Optional[str] = None,
    ) -> "OperationResult":
        return cls(outcome=OperationOutcome.SUCCESS, state=state, transaction_id=transaction_id, status_code=status_code)

    @classmethod
    def not_supported(cls, operation: str) -> "OperationResult":
        return cls(outcome=OperationOutcome.NOT_SUPPORTED, reason=f"{operation} not supported")

    @classmethod
    def failure(cls, reason: str, status_code: Optional[str] = None) -> "OperationResult":
        return cls(outcome=OperationOutcome.FAILURE, reason=reason, status_code=status_code)

    @property
    def ok(self) -> bool:
        return self.outcome is OperationOutcome.SUCCESS


class CallbackOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    REJECTED = "rejected"
    NO_TRANSITION = "no_transition"
    UNTRUSTED = "untrusted"
    NOT_FOUND = "not_found"
    ERROR = "error"


class CallbackResult(BaseModel):
    provider: str
    order_id: Optional[str] = None
    outcome: CallbackOutcome
    state: Optional[PaymentState] = None
    flagged_for_review: bool = False
    reason: Optional[str] = None


class OperationResponse(BaseModel):
    order_id: str
    operation: str
    result: OperationResult
    apply_outcome: Optional[str] = None
    state: Optional[PaymentState] = None


class PaymentTransitionDTO(BaseModel):
    from_state: PaymentState
    to_state: PaymentState
    origin: str
    status_code: Optional[str] = None
    transaction_id: Optional[str] = None
    occurred_at: datetime


class OrderPaymentDTO(BaseModel):
    order_id: str
    cart_number: str
    provider: str
    amount: Decimal
    currency: str
    state: PaymentState
    transaction_id: Optional[str] = None
    amount_authorized: Optional[Decimal] = None
    needs_review: bool = False
    review_reason: Optional[str] = None
    history: list[PaymentTransitionDTO] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, payment: OrderPayment) -> "OrderPaymentDTO":
        return cls(
            order_id=payment.order_id,
            cart_number=payment.cart_number,
            provider=payment.provider,
            amount=payment.amount,
            currency=payment.currency,
            state=payment.state,
            transaction_id=payment.transaction_id,
            amount_authorized=payment.amount_authorized,
            needs_review=payment.needs_review,
            review_reason=payment.review_reason,
            history=[
                PaymentTransitionDTO(
                    from_state=t.from_state,
                    to_state=t.to_state,
                    origin=t.origin.value,
                    status_code=t.status_code,
                    transaction_id=t.transaction_id,
                    occurred_at=t.occurred_at,
                )
                for t in payment.history
            ],
        )


def fields_to_str(data: dict[str, Any]) -> dict[str, str]:
    """Drop ``None`` values and stringify the rest, keeping insertion order."""
    return {k: str(v) for k, v in data.items() if v is not None}
