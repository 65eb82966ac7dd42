"""
订单支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Boolean, Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship

from .base import Base, TimestampMixin, utcnow


class OrderPaymentModel(TimestampMixin, Base):
    """
    订单支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.OrderPayment 中
    """
    __tablename__ = "order_payments"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 订单信息
    order_id = Column(String(100), unique=True, index=True, nullable=False, comment="订单ID")
    cart_number = Column(String(100), nullable=False, comment="网关侧的订单编号")

    # 网关信息
    provider = Column(String(50), nullable=False, index=True, comment="支付网关: ogone/buckaroo/wannafind/...")
    transaction_id = Column(String(200), nullable=True, index=True, comment="网关交易号")

    # 金额信息（使用 Numeric 存储精确金额）
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="订单含税金额（权威金额）")
    currency = Column(String(3), nullable=False, default="EUR", comment="货币代码 ISO-4217")
    amount_authorized = Column(Numeric(precision=15, scale=2), nullable=True, comment="网关确认的金额")

    # 状态
    state = Column(
        String(20),
        nullable=False,
        default="initialized",
        index=True,
        comment="支付状态: initialized/authorized/captured/refunded/cancelled/error"
    )

    # 人工复核
    needs_review = Column(Boolean, nullable=False, default=False, index=True, comment="金额不一致等待复核")
    review_reason = Column(Text, nullable=True, comment="复核原因")

    # 网关扩展属性（Klarna location、卡类型等）
    properties = Column(JSON, nullable=True, comment="网关扩展属性")

    # 关系
    transitions = relationship(
        "PaymentTransitionModel",
        back_populates="order_payment",
        lazy="select",
        order_by="PaymentTransitionModel.id",
    )

    # 索引
    __table_args__ = (
        UniqueConstraint("provider", "cart_number", name="uq_order_payments_provider_cart"),
        Index("ix_order_payments_provider_state", "provider", "state"),
    )

    def __repr__(self):
        return (
            f"<OrderPaymentModel(id={self.id}, order_id='{self.order_id}', "
            f"provider='{self.provider}', amount={self.amount}, state='{self.state}')>"
        )


class PaymentTransitionModel(Base):
    """
    支付状态变更历史（只追加）
    """
    __tablename__ = "payment_transitions"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 关联订单支付
    order_payment_id = Column(
        Integer,
        ForeignKey("order_payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="关联的订单支付ID"
    )

    from_state = Column(String(20), nullable=False, comment="变更前状态")
    to_state = Column(String(20), nullable=False, comment="变更后状态")
    origin = Column(String(20), nullable=False, comment="来源: callback/status_poll/capture/refund/cancel")
    status_code = Column(String(50), nullable=True, comment="网关原始状态码")
    transaction_id = Column(String(200), nullable=True, comment="网关交易号")

    occurred_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="发生时间"
    )

    # 关系
    order_payment = relationship("OrderPaymentModel", back_populates="transitions")

    def __repr__(self):
        return (
            f"<PaymentTransitionModel(id={self.id}, order_payment_id={self.order_payment_id}, "
            f"{self.from_state}->{self.to_state}, origin='{self.origin}')>"
        )
