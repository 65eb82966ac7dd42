"""
Payments API routes.

Registers order payments, renders gateway forms, receives gateway callbacks
and triggers outbound operations via the application service. Keep this
thin: no gateway details here.
"""
from __future__ import annotations

import ipaddress
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_payment_service
from application.dtos.payments import (
    CallbackOutcome,
    CallbackRequest,
    CallbackResult,
    RegisterOrderPayment,
    ReturnUrls,
)
from application.services.payment_service import PaymentService
from core.logging_config import get_logger
from core.response import success_response
from core.settings import gateway_settings


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def _ip_allowed(remote_ip: Optional[str], allowlist: list[str]) -> bool:
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


async def _callback_request(request: Request) -> CallbackRequest:
    """Collect query, form and raw body of a gateway notification."""
    body = await request.body()
    form: dict[str, str] = {}
    ct = (request.headers.get("content-type") or "").lower()
    if ct.startswith(FORM_CONTENT_TYPES):
        parsed = await request.form()
        form = {k: v for k, v in parsed.items() if isinstance(v, str)}
    client_ip = getattr(request.state, "client_ip", None) or (request.client.host if request.client else None)
    return CallbackRequest(
        query=dict(request.query_params),
        form=form,
        headers={k.lower(): v for k, v in request.headers.items()},
        body=body,
        client_ip=client_ip,
    )


async def _handle_callback(
    provider: str,
    order_id: Optional[str],
    request: Request,
    service: PaymentService,
):
    callback = await _callback_request(request)
    allowlist = gateway_settings.webhook.ip_allowlist or []
    if not _ip_allowed(callback.client_ip, allowlist):
        logger.warning("webhook_ip_not_allowed", provider=provider, order_id=order_id, client_ip=callback.client_ip)
        result = CallbackResult(
            provider=provider.lower(),
            order_id=order_id,
            outcome=CallbackOutcome.UNTRUSTED,
            reason="ip not allowed",
        )
    else:
        result = await service.process_callback(provider, callback, order_id=order_id)

    # Always 200 so gateways do not keep redelivering
    return success_response(data=result.model_dump(mode="json"), message=f"Callback {result.outcome.value}")


@router.post("/orders", summary="Register order payment")
async def register_order(payload: RegisterOrderPayment, service: PaymentService = Depends(get_payment_service)):
    order = await service.register_order(payload)
    return success_response(data=order.model_dump(mode="json"), message="Order payment registered")


@router.get("/orders/{order_id}", summary="Get order payment")
async def get_order(order_id: str, service: PaymentService = Depends(get_payment_service)):
    order = await service.get_order(order_id)
    return success_response(data=order.model_dump(mode="json"))


@router.post("/orders/{order_id}/form", summary="Build gateway payment form")
async def build_form(order_id: str, urls: ReturnUrls, service: PaymentService = Depends(get_payment_service)):
    form = await service.build_form(order_id, urls)
    return success_response(data=form.model_dump(mode="json"), message="Payment form built")


@router.post("/orders/{order_id}/{operation}", summary="Run gateway operation")
async def run_operation(
    order_id: str,
    operation: Literal["status", "capture", "refund", "cancel"],
    service: PaymentService = Depends(get_payment_service),
):
    response = await service.run_operation(order_id, operation)
    return success_response(data=response.model_dump(mode="json"), message=f"Operation {response.result.outcome.value}")


@router.api_route("/callbacks/{provider}/{order_id}", methods=["GET", "POST"], summary="Gateway callback for an order")
async def order_callback(
    provider: str,
    order_id: str,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    return await _handle_callback(provider, order_id, request, service)


@router.api_route("/callbacks/{provider}", methods=["GET", "POST"], summary="Gateway callback")
async def provider_callback(
    provider: str,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    return await _handle_callback(provider, None, request, service)
