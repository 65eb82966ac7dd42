"""
API依赖项 - 支付服务装配
"""
from fastapi import Request

from application.services.payment_service import PaymentService
from infrastructure.bootstrap import build_gateways, build_payment_service


async def get_payment_service(request: Request) -> PaymentService:
    """按请求装配支付服务，网关客户端在应用生命周期内复用"""
    gateways = getattr(request.app.state, "payment_gateways", None)
    if gateways is None:
        gateways = build_gateways()
        request.app.state.payment_gateways = gateways
    return await build_payment_service(gateways=gateways)
