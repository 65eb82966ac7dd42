"""
支付仓储接口 - 定义订单支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import OrderPayment


class OrderPaymentRepository(ABC):
    """订单支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: OrderPayment) -> OrderPayment:
        """创建订单支付记录"""
        pass

    @abstractmethod
    async def get_by_order_id(self, order_id: str) -> Optional[OrderPayment]:
        """根据订单ID获取支付（一个订单一笔支付）"""
        pass

    @abstractmethod
    async def get_by_cart_number(self, provider: str, cart_number: str) -> Optional[OrderPayment]:
        """根据网关侧的购物车编号获取支付"""
        pass

    @abstractmethod
    async def save(self, payment: OrderPayment) -> OrderPayment:
        """持久化状态、交易号、复核标记以及新增的历史记录"""
        pass
