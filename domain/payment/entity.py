"""
支付领域实体 - 订单支付聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException
from domain.gateway.profile import AmountUnit
from domain.payment.reconciliation import MonetaryAmount
from shared.codes.currency_codes import is_iso4217


class PaymentState(str, Enum):
    """支付状态枚举"""
    INITIALIZED = "initialized"  # 已创建，尚未收到网关结果
    AUTHORIZED = "authorized"    # 已授权
    CAPTURED = "captured"        # 已扣款
    REFUNDED = "refunded"        # 已退款（终态）
    CANCELLED = "cancelled"      # 已取消（终态）
    ERROR = "error"              # 失败


class TransitionOrigin(str, Enum):
    """状态变更来源"""
    CALLBACK = "callback"
    STATUS_POLL = "status_poll"
    CAPTURE = "capture"
    REFUND = "refund"
    CANCEL = "cancel"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class PaymentTransition:
    """一次已生效的状态变更记录（只追加）"""
    from_state: PaymentState
    to_state: PaymentState
    origin: TransitionOrigin
    status_code: Optional[str] = None
    transaction_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderPayment:
    """
    订单支付聚合根 - 记录订单在某个网关上的支付状态

    业务规则：
    1. 每个订单只有一条支付记录
    2. 金额必须大于0，币种必须是 ISO-4217 代码
    3. 状态只能通过状态机变更，每次变更追加一条历史记录
    """

    id: Optional[int]
    order_id: str
    cart_number: str
    provider: str
    amount: Decimal  # 含税订单金额，权威金额
    currency: str
    state: PaymentState = PaymentState.INITIALIZED
    transaction_id: Optional[str] = None
    amount_authorized: Optional[Decimal] = None
    needs_review: bool = False
    review_reason: Optional[str] = None
    properties: dict[str, Any] = field(default_factory=dict)
    history: list[PaymentTransition] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self._validate_amount()
        self._validate_currency()
        self.currency = self.currency.upper()
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.properties is None:
            self.properties = {}

    def _validate_amount(self) -> None:
        """业务规则：金额必须大于0"""
        if self.amount <= 0:
            raise DomainValidationException(f"Order amount must be positive: {self.amount}", field="amount")

    def _validate_currency(self) -> None:
        """业务规则：货币代码必须是 ISO-4217"""
        if not is_iso4217(self.currency):
            raise DomainValidationException(f"Invalid currency code: {self.currency}", field="currency")

    @property
    def authoritative_amount(self) -> MonetaryAmount:
        return MonetaryAmount(self.amount, self.currency, AmountUnit.MAJOR)

    def record_transition(
        self,
        to_state: PaymentState,
        origin: TransitionOrigin,
        *,
        status_code: Optional[str] = None,
        transaction_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> PaymentTransition:
        """Move to ``to_state`` and append the history entry.

        Reachability is checked by the state machine, not here.
        """
        transition = PaymentTransition(
            from_state=self.state,
            to_state=to_state,
            origin=origin,
            status_code=status_code,
            transaction_id=transaction_id,
        )
        self.state = to_state
        if transaction_id:
            self.transaction_id = transaction_id
        if amount is not None and to_state in (PaymentState.AUTHORIZED, PaymentState.CAPTURED):
            self.amount_authorized = amount
        self.history.append(transition)
        self.updated_at = transition.occurred_at
        return transition

    def flag_for_review(self, reason: str) -> None:
        self.needs_review = True
        self.review_reason = reason
        self.updated_at = datetime.now(timezone.utc)
