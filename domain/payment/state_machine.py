"""
支付状态机 - 幂等地应用网关回调与操作结果
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from .entity import OrderPayment, PaymentState, TransitionOrigin
from .events import PaymentEvent, PaymentStateChanged, TransitionRejected
from .repository import OrderPaymentRepository


ALLOWED_TRANSITIONS: dict[PaymentState, frozenset[PaymentState]] = {
    PaymentState.INITIALIZED: frozenset(
        {PaymentState.AUTHORIZED, PaymentState.CAPTURED, PaymentState.CANCELLED, PaymentState.ERROR}
    ),
    PaymentState.AUTHORIZED: frozenset(
        {PaymentState.CAPTURED, PaymentState.CANCELLED, PaymentState.REFUNDED, PaymentState.ERROR}
    ),
    PaymentState.CAPTURED: frozenset({PaymentState.REFUNDED, PaymentState.ERROR}),
    PaymentState.REFUNDED: frozenset(),
    PaymentState.CANCELLED: frozenset(),
    PaymentState.ERROR: frozenset(),
}

# Error only recovers through a status poll, and only where the gateway supports it.
RECOVERY_FROM_ERROR: frozenset[PaymentState] = frozenset(
    {PaymentState.AUTHORIZED, PaymentState.CAPTURED, PaymentState.CANCELLED, PaymentState.REFUNDED}
)

# A failure notification can never undo a capture; it is a stale delivery.
NOT_FROM_CALLBACK: frozenset[tuple[PaymentState, PaymentState]] = frozenset(
    {(PaymentState.CAPTURED, PaymentState.ERROR)}
)


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TransitionRequest:
    target: PaymentState
    origin: TransitionOrigin
    status_code: Optional[str] = None
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class ApplyResult:
    outcome: ApplyOutcome
    previous: PaymentState
    state: PaymentState
    reason: Optional[str] = None


def is_reachable(
    current: PaymentState,
    target: PaymentState,
    origin: TransitionOrigin,
    *,
    allow_error_recovery: bool = False,
) -> bool:
    if current is PaymentState.ERROR:
        return (
            allow_error_recovery
            and origin is TransitionOrigin.STATUS_POLL
            and target in RECOVERY_FROM_ERROR
        )
    if origin is TransitionOrigin.CALLBACK and (current, target) in NOT_FROM_CALLBACK:
        return False
    return target in ALLOWED_TRANSITIONS[current]


class PaymentStateMachine:
    """
    支付状态机（领域服务）

    职责：
    1. 校验状态转换是否可达
    2. 相同状态的重复通知被忽略（幂等）
    3. 生效的转换写入历史并通过仓储保存
    4. 产生领域事件
    """

    def __init__(self, *, allow_error_recovery: bool = False):
        self.allow_error_recovery = allow_error_recovery
        self.events: List[PaymentEvent] = []

    async def apply(
        self,
        payment: OrderPayment,
        request: TransitionRequest,
        repository: OrderPaymentRepository,
    ) -> ApplyResult:
        current = payment.state
        if request.target is current:
            return ApplyResult(ApplyOutcome.IGNORED, current, current)

        if not is_reachable(current, request.target, request.origin, allow_error_recovery=self.allow_error_recovery):
            reason = f"{current.value} -> {request.target.value} is not allowed"
            self.events.append(
                TransitionRejected(
                    order_id=payment.order_id,
                    provider=payment.provider,
                    current_state=current.value,
                    requested_state=request.target.value,
                    origin=request.origin.value,
                    status_code=request.status_code,
                )
            )
            return ApplyResult(ApplyOutcome.REJECTED, current, current, reason)

        payment.record_transition(
            request.target,
            request.origin,
            status_code=request.status_code,
            transaction_id=request.transaction_id,
            amount=request.amount,
        )
        await repository.save(payment)
        self.events.append(
            PaymentStateChanged(
                order_id=payment.order_id,
                provider=payment.provider,
                from_state=current.value,
                to_state=payment.state.value,
                origin=request.origin.value,
                transaction_id=payment.transaction_id,
            )
        )
        return ApplyResult(ApplyOutcome.APPLIED, current, payment.state)

    def get_domain_events(self) -> List[PaymentEvent]:
        """获取并清空领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
