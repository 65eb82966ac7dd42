"""
支付服务装配（组合根）

网关配置只在这里解析一次，然后按调用显式传入各网关操作。
API 依赖与 Celery 任务共用这里的装配逻辑。
"""
from __future__ import annotations

from typing import Callable, Optional

import httpx

from application.ports.alerts import AlertSink
from application.ports.locks import OrderLockManager
from application.ports.payment_gateway import PaymentGateway
from application.services.payment_service import PaymentService
from core.config import settings
from core.logging_config import get_logger
from core.settings import GatewaySettings, gateway_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.external.alerts import build_alert_sink
from infrastructure.external.cache import (
    LocalOrderLockManager,
    RedisOrderLockManager,
    get_redis_client,
)
from infrastructure.external.payments import get_payment_gateway

logger = get_logger(__name__)

# 单进程部署时所有请求共享同一组订单锁
_local_locks = LocalOrderLockManager(blocking_timeout=settings.redis.lock_blocking_timeout)


def build_gateways(
    config: GatewaySettings = gateway_settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, PaymentGateway]:
    """为所有启用的网关创建客户端"""
    timeouts = config.timeouts.model_dump()
    gateways: dict[str, PaymentGateway] = {}
    for name, provider_settings in config.providers().items():
        if not provider_settings.enabled:
            continue
        gateways[name] = get_payment_gateway(name, timeouts=timeouts, transport=transport)
    logger.info("payment_gateways_configured", providers=sorted(gateways))
    return gateways


async def build_lock_manager() -> OrderLockManager:
    """配置了 Redis 时使用分布式锁，否则使用进程内锁"""
    if not settings.redis.url:
        return _local_locks
    redis = await get_redis_client()
    return RedisOrderLockManager(
        redis,
        timeout=settings.redis.lock_timeout,
        blocking_timeout=settings.redis.lock_blocking_timeout,
    )


def build_alerts(config: GatewaySettings = gateway_settings) -> AlertSink:
    return build_alert_sink(config.alerts, broker_url=settings.celery.broker_url or settings.redis.url)


async def build_payment_service(
    *,
    config: GatewaySettings = gateway_settings,
    gateways: Optional[dict[str, PaymentGateway]] = None,
    locks: Optional[OrderLockManager] = None,
    alerts: Optional[AlertSink] = None,
    uow_factory: Optional[Callable[..., AbstractUnitOfWork]] = None,
) -> PaymentService:
    if uow_factory is None:
        from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

        uow_factory = SQLAlchemyUnitOfWork
    return PaymentService(
        gateways=gateways if gateways is not None else build_gateways(config),
        settings_by_provider=config.providers(),
        uow_factory=uow_factory,
        locks=locks or await build_lock_manager(),
        alerts=alerts or build_alerts(config),
        poll_attempts=config.status_poll.attempts,
        poll_backoff=config.status_poll.base_backoff,
        poll_max_backoff=config.status_poll.max_backoff,
    )


async def close_gateways(gateways: dict[str, PaymentGateway]) -> None:
    for gateway in gateways.values():
        await gateway.aclose()
