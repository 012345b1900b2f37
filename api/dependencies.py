"""
API依赖项 - 调用方身份、管理员校验和服务组装

身份由前置的身份服务认证后通过请求头转发（X-User-Id / X-User-Role），
本服务只读取，不签发也不校验令牌。
"""
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, Request

from application.ports.notifier import NotificationSink
from application.ports.payment_gateway import PaymentGateway
from application.ports.slip_storage import SlipStorage
from application.ports.slip_verifier import SlipVerifier
from application.services.checkout_service import CheckoutService
from application.services.fulfillment import FulfillmentService
from application.services.reconciliation_service import ReconciliationService
from core.config import settings
from core.exceptions import ForbiddenException, UnauthorizedException
from infrastructure.external.payments import get_payment_gateway, get_slip_verifier
from infrastructure.external.storage import LocalSlipStorage
from infrastructure.tasks.utils.dispatcher import CeleryNotificationSink
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@dataclass(frozen=True)
class Caller:
    """当前调用方"""
    user_id: str
    role: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == settings.identity.admin_role


async def get_caller(request: Request) -> Caller:
    """从转发头中读取调用方"""
    user_id = (request.headers.get(settings.identity.user_id_header) or "").strip()
    if not user_id:
        raise UnauthorizedException()
    role = (request.headers.get(settings.identity.role_header) or "").strip().lower()
    return Caller(user_id=user_id, role=role)


async def get_admin(caller: Caller = Depends(get_caller)) -> Caller:
    """要求管理员角色"""
    if not caller.is_admin:
        raise ForbiddenException()
    return caller


# 外部适配器在进程内复用（各自持有 httpx 连接池）
@lru_cache
def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


@lru_cache
def get_verifier() -> SlipVerifier:
    return get_slip_verifier()


@lru_cache
def get_slip_storage() -> SlipStorage:
    return LocalSlipStorage()


@lru_cache
def get_notifier() -> NotificationSink:
    return CeleryNotificationSink()


async def get_checkout_service(
    gateway: PaymentGateway = Depends(get_gateway),
    verifier: SlipVerifier = Depends(get_verifier),
    storage: SlipStorage = Depends(get_slip_storage),
    notifier: NotificationSink = Depends(get_notifier),
) -> CheckoutService:
    return CheckoutService(
        uow_factory=SQLAlchemyUnitOfWork,
        gateway=gateway,
        slip_verifier=verifier,
        slip_storage=storage,
        notifier=notifier,
        fulfillment=FulfillmentService(SQLAlchemyUnitOfWork, notifier),
    )


async def get_reconciliation_service(
    notifier: NotificationSink = Depends(get_notifier),
) -> ReconciliationService:
    return ReconciliationService(
        uow_factory=SQLAlchemyUnitOfWork,
        fulfillment=FulfillmentService(SQLAlchemyUnitOfWork, notifier),
        notifier=notifier,
    )
