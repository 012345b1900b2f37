"""
结账API路由 - 报价、创建支付、查询支付、上传转账凭证
"""
from fastapi import APIRouter, Depends, File, UploadFile, status

from api.dependencies import Caller, get_caller, get_checkout_service
from application.dtos.payments import (
    CheckoutResultDTO,
    CreatePaymentRequest,
    PaymentDTO,
    QuoteDTO,
    QuoteRequest,
    SlipResultDTO,
)
from application.services.checkout_service import CheckoutService
from core.i18n import t
from core.response import Response as ApiResponse, success_response

router = APIRouter(tags=["Checkout"])


@router.post("/checkout/quote", summary="价格试算", response_model=ApiResponse[QuoteDTO])
async def quote(
    payload: QuoteRequest,
    caller: Caller = Depends(get_caller),
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    只读报价，不占用优惠券名额

    - **item_kind**: course 或 bundle
    - **item_id**: 课程或课程包ID
    - **coupon_code**: 优惠码（可选）
    """
    result = await service.quote(caller.user_id, payload)
    return success_response(data=result, message=t("checkout.quote.ready"))


@router.post(
    "/payments",
    summary="创建支付",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[CheckoutResultDTO],
)
async def create_payment(
    payload: CreatePaymentRequest,
    caller: Caller = Depends(get_caller),
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    创建支付

    最终价格为 0 时直接授予选课，不创建支付记录；
    银行卡支付返回网关跳转地址，银行转账需随后上传凭证。
    """
    result = await service.create_payment(caller.user_id, payload)
    key = "checkout.enrolled" if result.free else "payment.created"
    return success_response(data=result, message=t(key))


@router.get("/payments/{payment_id}", summary="查询支付", response_model=ApiResponse[PaymentDTO])
async def get_payment(
    payment_id: str,
    caller: Caller = Depends(get_caller),
    service: CheckoutService = Depends(get_checkout_service),
):
    payment = await service.get_payment(caller.user_id, payment_id)
    return success_response(data=payment, message=t("payment.retrieved"))


@router.post(
    "/payments/{payment_id}/slip",
    summary="上传转账凭证",
    response_model=ApiResponse[SlipResultDTO],
)
async def attach_slip(
    payment_id: str,
    file: UploadFile = File(...),
    caller: Caller = Depends(get_caller),
    service: CheckoutService = Depends(get_checkout_service),
):
    """上传后立即校验，返回 completed 或 failed 的支付

    最多读取 max_bytes + 1 字节，超出部分由服务判定为 too_large
    """
    data = await file.read(service.settings.slip.max_bytes + 1)
    result = await service.attach_slip(
        caller.user_id,
        payment_id,
        data,
        content_type=file.content_type,
        filename=file.filename,
    )
    return success_response(data=result, message=t("slip.processed"))
