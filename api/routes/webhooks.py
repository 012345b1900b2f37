"""
Gateway webhook routes.

The raw body is handed to the gateway adapter untouched; signature checks
need the exact bytes Stripe signed.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_checkout_service
from application.dtos.payments import WebhookAckDTO
from application.services.checkout_service import CheckoutService
from core.i18n import t
from core.response import Response as ApiResponse, success_response


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe", summary="Stripe webhook", response_model=ApiResponse[WebhookAckDTO])
async def stripe_webhook(
    request: Request,
    service: CheckoutService = Depends(get_checkout_service),
):
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    ack = await service.handle_gateway_webhook(headers, raw_body)
    # 200 for every authenticated event so the gateway stops redelivering
    return success_response(data=ack, message=t("payment.webhook.received"))
