"""
对账API路由 - 管理员专用
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import Caller, get_admin, get_reconciliation_service
from application.dtos.payments import (
    BulkMarkFailedRequest,
    BulkResultDTO,
    PaymentDTO,
    ReconciliationListDTO,
    ReconciliationSummaryDTO,
    RefundRequest,
    RetryRequest,
    RetryResultDTO,
    SweepResultDTO,
)
from application.services.reconciliation_service import ReconciliationService
from core.i18n import t
from core.response import Response as ApiResponse, success_response
from domain.payment.entity import PaymentMethod, ReconciliationBucket

router = APIRouter(
    prefix="/admin/payments",
    tags=["Reconciliation"],
)


@router.get("", summary="对账列表", response_model=ApiResponse[ReconciliationListDTO])
async def list_payments(
    bucket: ReconciliationBucket = Query(ReconciliationBucket.PENDING),
    days_back: Optional[int] = Query(None, description="回溯天数，限制在 7-90 之间"),
    method: Optional[PaymentMethod] = Query(None),
    admin: Caller = Depends(get_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    按状态分组列出近期支付（最新在前，最多 200 条）

    - **bucket**: pending / verifying / failed / unfulfilled
    """
    result = await service.list_payments(bucket, days_back, method)
    return success_response(data=result)


@router.get("/summary", summary="对账汇总", response_model=ApiResponse[ReconciliationSummaryDTO])
async def summary(
    days_back: Optional[int] = Query(None),
    admin: Caller = Depends(get_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    result = await service.summary(days_back)
    return success_response(data=result)


@router.post("/bulk-mark-failed", summary="批量标记失败", response_model=ApiResponse[BulkResultDTO])
async def bulk_mark_failed(
    payload: BulkMarkFailedRequest,
    admin: Caller = Depends(get_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """verifying 中的支付逐条标记失败，已被并发处理的记为 conflict"""
    result = await service.bulk_mark_failed(payload.payment_ids, admin.user_id, payload.reason)
    return success_response(data=result, message=t("reconciliation.bulk.done"))


@router.post("/expire-stale", summary="过期陈旧待支付", response_model=ApiResponse[SweepResultDTO])
async def expire_stale(
    older_than_hours: Optional[int] = Query(None, ge=1),
    admin: Caller = Depends(get_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    result = await service.expire_stale(admin.user_id, older_than_hours)
    return success_response(data=result, message=t("reconciliation.sweep.done"))


@router.post("/regrant-unfulfilled", summary="补发未完成选课", response_model=ApiResponse[SweepResultDTO])
async def regrant_unfulfilled(
    admin: Caller = Depends(get_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    result = await service.regrant_unfulfilled()
    return success_response(data=result, message=t("reconciliation.sweep.done"))


@router.post("/{payment_id}/retry", summary="人工通过或驳回", response_model=ApiResponse[RetryResultDTO])
async def retry(
    payment_id: str,
    payload: RetryRequest,
    admin: Caller = Depends(get_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    - **approve**: verifying / failed -> completed，并授予选课
    - **reject**: pending / verifying / failed -> failed，之后不可再通过
    """
    result = await service.retry(payment_id, payload.action, admin.user_id, payload.reason)
    return success_response(data=result, message=t(f"reconciliation.{payload.action}.done"))


@router.post("/{payment_id}/refund", summary="退款", response_model=ApiResponse[PaymentDTO])
async def refund(
    payment_id: str,
    payload: RefundRequest,
    admin: Caller = Depends(get_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    result = await service.refund(payment_id, admin.user_id, payload.reason)
    return success_response(data=result, message=t("reconciliation.refund.done"))


@router.post("/{payment_id}/regrant", summary="重新授予选课", response_model=ApiResponse[RetryResultDTO])
async def regrant(
    payment_id: str,
    admin: Caller = Depends(get_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    result = await service.regrant(payment_id, admin.user_id)
    return success_response(data=result, message=t("reconciliation.regrant.done"))
