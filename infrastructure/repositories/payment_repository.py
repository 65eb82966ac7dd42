"""
订单支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from domain.common.exceptions import OrderPaymentAlreadyExistsException
from domain.payment.entity import (
    OrderPayment,
    PaymentState,
    PaymentTransition,
    TransitionOrigin,
)
from domain.payment.repository import OrderPaymentRepository
from infrastructure.models.payment import OrderPaymentModel, PaymentTransitionModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderPaymentRepository(OrderPaymentRepository):
    """订单支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_transition(model: PaymentTransitionModel) -> PaymentTransition:
        return PaymentTransition(
            from_state=PaymentState(model.from_state),
            to_state=PaymentState(model.to_state),
            origin=TransitionOrigin(model.origin),
            status_code=model.status_code,
            transaction_id=model.transaction_id,
            occurred_at=model.occurred_at,
        )

    def _to_entity(self, model: OrderPaymentModel, history: list[PaymentTransitionModel]) -> OrderPayment:
        """将数据库模型转换为领域实体"""
        return OrderPayment(
            id=model.id,
            order_id=model.order_id,
            cart_number=model.cart_number,
            provider=model.provider,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            state=PaymentState(model.state),
            transaction_id=model.transaction_id,
            amount_authorized=Decimal(str(model.amount_authorized)) if model.amount_authorized is not None else None,
            needs_review=bool(model.needs_review),
            review_reason=model.review_reason,
            properties=dict(model.properties or {}),
            history=[self._to_transition(t) for t in history],
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def _history(self, order_payment_id: int) -> list[PaymentTransitionModel]:
        result = await self.session.execute(
            select(PaymentTransitionModel)
            .where(PaymentTransitionModel.order_payment_id == order_payment_id)
            .order_by(PaymentTransitionModel.id)
        )
        return list(result.scalars().all())

    async def _load(self, model: Optional[OrderPaymentModel]) -> Optional[OrderPayment]:
        if model is None:
            return None
        return self._to_entity(model, await self._history(model.id))

    async def create(self, payment: OrderPayment) -> OrderPayment:
        """创建订单支付记录"""
        try:
            db_payment = OrderPaymentModel(
                order_id=payment.order_id,
                cart_number=payment.cart_number,
                provider=payment.provider,
                amount=payment.amount,
                currency=payment.currency,
                state=payment.state.value,
                transaction_id=payment.transaction_id,
                amount_authorized=payment.amount_authorized,
                needs_review=payment.needs_review,
                review_reason=payment.review_reason,
                properties=payment.properties,
            )
            self.session.add(db_payment)
            await self.session.flush()
            await self.session.refresh(db_payment)
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning("order_payment_create_conflict", order_id=payment.order_id, error=str(e.orig))
            raise OrderPaymentAlreadyExistsException(payment.order_id)

        logger.info(
            "order_payment_created",
            order_payment_id=db_payment.id,
            order_id=db_payment.order_id,
            provider=db_payment.provider,
        )
        return self._to_entity(db_payment, [])

    async def get_by_order_id(self, order_id: str) -> Optional[OrderPayment]:
        """根据订单ID获取支付"""
        result = await self.session.execute(
            select(OrderPaymentModel).where(OrderPaymentModel.order_id == order_id)
        )
        return await self._load(result.scalar_one_or_none())

    async def get_by_cart_number(self, provider: str, cart_number: str) -> Optional[OrderPayment]:
        """根据网关侧的购物车编号获取支付"""
        result = await self.session.execute(
            select(OrderPaymentModel).where(
                OrderPaymentModel.provider == provider,
                OrderPaymentModel.cart_number == cart_number,
            )
        )
        return await self._load(result.scalar_one_or_none())

    async def save(self, payment: OrderPayment) -> OrderPayment:
        """
        持久化订单支付

        历史记录只追加：已入库的条数之后的记录才会写入
        """
        result = await self.session.execute(
            select(OrderPaymentModel).where(OrderPaymentModel.order_id == payment.order_id)
        )
        db_payment = result.scalar_one_or_none()
        if not db_payment:
            raise ValueError(f"Order payment {payment.order_id} not found")

        db_payment.state = payment.state.value
        db_payment.transaction_id = payment.transaction_id
        db_payment.amount_authorized = payment.amount_authorized
        db_payment.needs_review = payment.needs_review
        db_payment.review_reason = payment.review_reason
        db_payment.properties = dict(payment.properties)
        if payment.updated_at is not None:
            db_payment.updated_at = payment.updated_at

        persisted = await self.session.scalar(
            select(func.count())
            .select_from(PaymentTransitionModel)
            .where(PaymentTransitionModel.order_payment_id == db_payment.id)
        )
        for transition in payment.history[persisted or 0:]:
            self.session.add(
                PaymentTransitionModel(
                    order_payment_id=db_payment.id,
                    from_state=transition.from_state.value,
                    to_state=transition.to_state.value,
                    origin=transition.origin.value,
                    status_code=transition.status_code,
                    transaction_id=transition.transaction_id,
                    occurred_at=transition.occurred_at,
                )
            )

        await self.session.flush()
        logger.info(
            "order_payment_saved",
            order_payment_id=db_payment.id,
            order_id=db_payment.order_id,
            state=db_payment.state,
            needs_review=db_payment.needs_review,
        )
        return payment
