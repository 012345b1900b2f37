"""In-memory collaborators for the payment core.

The repositories mirror the SQLAlchemy ones closely enough for the
application services: status changes are conditional, enrollment inserts
ignore duplicates, coupon increments respect the limit, and every write
registers an undo step so a unit of work that raises leaves nothing behind.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, List, Optional

import pytest

from application.dtos.payments import (
    CheckoutSession,
    CheckoutSessionRequest,
    GatewayOutcome,
    SlipVerdict,
    SlipVerificationRequest,
    StoredSlip,
)
from domain.catalog.entity import CatalogItem, ItemKind, ItemRef
from domain.catalog.repository import CatalogRepository
from domain.common.exceptions import WebhookSignatureException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.coupon.entity import Coupon, CouponRedemption, DiscountKind, normalize_code
from domain.coupon.repository import CouponRepository
from domain.enrollment.entity import Enrollment
from domain.enrollment.repository import EnrollmentRepository
from domain.payment.entity import (
    AuditEntry,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentView,
    ReconciliationBucket,
    Transition,
    TransitionResult,
)
from domain.payment.repository import PaymentAuditRepository, PaymentRepository


class InMemoryStore:
    def __init__(self) -> None:
        self.payments: dict[str, Payment] = {}
        self.audit: list[AuditEntry] = []
        self.coupons: dict[str, Coupon] = {}
        self.redemptions: list[CouponRedemption] = []
        self.enrollments: dict[tuple[str, str], Enrollment] = {}
        self.courses: dict[str, dict] = {}
        self.bundles: dict[str, dict] = {}
        self.users: dict[str, dict] = {}
        # course ids whose enrollment insert raises, to simulate a crash mid-grant
        self.failing_courses: set[str] = set()

    # --- seeding --------------------------------------------------------------

    def add_course(self, course_id: str, price: str, *, title: Optional[str] = None,
                   currency: str = "THB", published: bool = True) -> str:
        self.courses[course_id] = {
            "title": title or f"Course {course_id}",
            "price": Decimal(price),
            "currency": currency,
            "published": published,
        }
        return course_id

    def add_bundle(self, bundle_id: str, price: str, course_ids: list[str], *,
                   title: Optional[str] = None, currency: str = "THB", published: bool = True) -> str:
        self.bundles[bundle_id] = {
            "title": title or f"Bundle {bundle_id}",
            "price": Decimal(price),
            "currency": currency,
            "course_ids": list(course_ids),
            "published": published,
        }
        return bundle_id

    def add_user(self, user_id: str, name: str, email: str) -> str:
        self.users[user_id] = {"name": name, "email": email}
        return user_id

    def add_coupon(self, code: str, kind: DiscountKind, value: str, **kwargs) -> Coupon:
        coupon = Coupon(
            id=kwargs.pop("id", uuid.uuid4().hex),
            code=code,
            discount_kind=kind,
            discount_value=Decimal(value),
            **kwargs,
        )
        self.coupons[coupon.id] = coupon
        return coupon

    def add_payment(self, *, status: PaymentStatus = PaymentStatus.PENDING,
                    age: timedelta = timedelta(0), **kwargs) -> Payment:
        created = datetime.now(timezone.utc) - age
        defaults = dict(
            id=uuid.uuid4().hex,
            user_id="u1",
            course_id=None,
            bundle_id=None,
            amount=Decimal("500.00"),
            currency="THB",
            method=PaymentMethod.BANK_TRANSFER,
            status=status,
            created_at=created,
            updated_at=created,
        )
        defaults.update(kwargs)
        if not defaults["course_id"] and not defaults["bundle_id"]:
            defaults["course_id"] = "c1"
        payment = Payment(**defaults)
        self.payments[payment.id] = payment
        return payment

    def enrolled(self, user_id: str) -> set[str]:
        return {course for (user, course) in self.enrollments if user == user_id}


class _Repo:
    def __init__(self, store: InMemoryStore, uow: "InMemoryUnitOfWork") -> None:
        self.store = store
        self.uow = uow


class InMemoryPaymentRepository(_Repo, PaymentRepository):

    async def create(self, payment: Payment) -> Payment:
        await asyncio.sleep(0)
        self.store.payments[payment.id] = replace(payment)
        self.uow.on_rollback(lambda: self.store.payments.pop(payment.id, None))
        return replace(payment)

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        await asyncio.sleep(0)
        payment = self.store.payments.get(payment_id)
        return replace(payment) if payment else None

    async def get_by_external_ref(self, external_ref: str) -> Optional[Payment]:
        for payment in self.store.payments.values():
            if payment.external_ref == external_ref:
                return replace(payment)
        return None

    async def transition(self, transition: Transition) -> TransitionResult:
        await asyncio.sleep(0)
        stored = self.store.payments.get(transition.payment_id)
        if stored is None:
            return TransitionResult(applied=False, payment=None)
        if stored.status != transition.expected or (
            transition.requires_unresolved and stored.resolution is not None
        ):
            return TransitionResult(applied=False, payment=replace(stored))

        before = replace(stored)
        stored.status = transition.target
        stored.updated_at = transition.at
        if transition.external_ref is not None:
            stored.external_ref = transition.external_ref
        if transition.resolution is not None:
            stored.resolution = transition.resolution
        if transition.target == PaymentStatus.COMPLETED:
            stored.completed_at = transition.at
        elif transition.target == PaymentStatus.FAILED:
            stored.failed_at = transition.at
            if transition.reason is not None:
                stored.failure_reason = transition.reason
        self.uow.on_rollback(lambda: self.store.payments.__setitem__(before.id, before))
        return TransitionResult(applied=True, payment=replace(stored))

    async def record_attempt(self, payment_id: str, limit: int, at: datetime) -> bool:
        await asyncio.sleep(0)
        stored = self.store.payments.get(payment_id)
        if stored is None or stored.retry_count >= limit:
            return False
        before = (stored.retry_count, stored.last_retry_at)
        stored.retry_count += 1
        stored.last_retry_at = at

        def undo():
            stored.retry_count, stored.last_retry_at = before
        self.uow.on_rollback(undo)
        return True

    async def mark_fulfilled(self, payment_id: str, at: datetime) -> bool:
        stored = self.store.payments.get(payment_id)
        if stored is None or stored.status != PaymentStatus.COMPLETED or stored.fulfilled_at:
            return False
        stored.fulfilled_at = at
        self.uow.on_rollback(lambda: setattr(stored, "fulfilled_at", None))
        return True

    def _in_bucket(self, payment: Payment, bucket: ReconciliationBucket) -> bool:
        if bucket == ReconciliationBucket.UNFULFILLED:
            return payment.needs_fulfillment
        return payment.status.value == bucket.value

    async def list_for_reconciliation(self, bucket, since, limit, method=None) -> List[PaymentView]:
        rows = [
            p for p in self.store.payments.values()
            if self._in_bucket(p, bucket) and p.created_at >= since
            and (method is None or p.method == method)
        ]
        rows.sort(key=lambda p: p.created_at, reverse=True)
        views = []
        for p in rows[:limit]:
            user = self.store.users.get(p.user_id, {})
            views.append(PaymentView(
                payment=replace(p),
                user_name=user.get("name"),
                user_email=user.get("email"),
                course_title=self.store.courses.get(p.course_id or "", {}).get("title"),
                bundle_title=self.store.bundles.get(p.bundle_id or "", {}).get("title"),
            ))
        return views

    async def count_by_bucket(self, since: datetime) -> dict[ReconciliationBucket, int]:
        return {
            bucket: sum(
                1 for p in self.store.payments.values()
                if self._in_bucket(p, bucket) and p.created_at >= since
            )
            for bucket in ReconciliationBucket
        }

    async def list_stale_pending(self, older_than: datetime, limit: int) -> List[Payment]:
        rows = sorted(
            (p for p in self.store.payments.values()
             if p.status == PaymentStatus.PENDING and p.created_at < older_than),
            key=lambda p: p.created_at,
        )
        return [replace(p) for p in rows[:limit]]

    async def list_unfulfilled(self, limit: int) -> List[Payment]:
        rows = [p for p in self.store.payments.values() if p.needs_fulfillment]
        return [replace(p) for p in rows[:limit]]


class InMemoryAuditRepository(_Repo, PaymentAuditRepository):

    async def add(self, entry: AuditEntry) -> AuditEntry:
        self.store.audit.append(entry)
        self.uow.on_rollback(lambda: self.store.audit.remove(entry))
        return entry

    async def list_for_payment(self, payment_id: str) -> List[AuditEntry]:
        return [e for e in self.store.audit if e.payment_id == payment_id]


class InMemoryCouponRepository(_Repo, CouponRepository):

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        await asyncio.sleep(0)
        for coupon in self.store.coupons.values():
            if coupon.code == normalize_code(code):
                return replace(coupon)
        return None

    async def get_by_id(self, coupon_id: str) -> Optional[Coupon]:
        coupon = self.store.coupons.get(coupon_id)
        return replace(coupon) if coupon else None

    async def try_increment(self, coupon_id: str) -> bool:
        await asyncio.sleep(0)
        coupon = self.store.coupons.get(coupon_id)
        if coupon is None or coupon.is_exhausted:
            return False
        coupon.redeemed_count += 1

        def undo():
            coupon.redeemed_count -= 1

        self.uow.on_rollback(undo)
        return True

    async def add_redemption(self, redemption: CouponRedemption) -> CouponRedemption:
        self.store.redemptions.append(redemption)
        self.uow.on_rollback(lambda: self.store.redemptions.remove(redemption))
        return redemption

    async def count_user_redemptions(self, coupon_id: str, user_id: str) -> int:
        return sum(1 for r in self.store.redemptions if r.coupon_id == coupon_id and r.user_id == user_id)


class InMemoryEnrollmentRepository(_Repo, EnrollmentRepository):

    async def add_if_absent(self, enrollment: Enrollment) -> bool:
        await asyncio.sleep(0)
        if enrollment.course_id in self.store.failing_courses:
            raise ConnectionError("enrollment store unavailable")
        key = (enrollment.user_id, enrollment.course_id)
        if key in self.store.enrollments:
            return False
        self.store.enrollments[key] = enrollment
        self.uow.on_rollback(lambda: self.store.enrollments.pop(key, None))
        return True

    async def exists(self, user_id: str, course_id: str) -> bool:
        return (user_id, course_id) in self.store.enrollments

    async def owned_course_ids(self, user_id: str, course_ids: list[str]) -> set[str]:
        return {c for c in course_ids if (user_id, c) in self.store.enrollments}


class InMemoryCatalogRepository(_Repo, CatalogRepository):

    async def resolve(self, ref: ItemRef) -> Optional[CatalogItem]:
        if ref.kind == ItemKind.COURSE:
            course = self.store.courses.get(ref.id)
            if course is None:
                return None
            return CatalogItem(
                ref=ref,
                title=course["title"],
                price=course["price"],
                currency=course["currency"],
                course_ids=[ref.id],
                slug=ref.id,
                is_published=course["published"],
            )
        bundle = self.store.bundles.get(ref.id)
        if bundle is None:
            return None
        return CatalogItem(
            ref=ref,
            title=bundle["title"],
            price=bundle["price"],
            currency=bundle["currency"],
            course_ids=list(bundle["course_ids"]),
            list_price=sum(
                (self.store.courses[c]["price"] for c in bundle["course_ids"]), Decimal("0")
            ),
            slug=ref.id,
            is_published=bundle["published"],
        )

    async def get_course_ids(self, ref: ItemRef) -> list[str]:
        if ref.kind == ItemKind.COURSE:
            return [ref.id] if ref.id in self.store.courses else []
        return list(self.store.bundles.get(ref.id, {}).get("course_ids", []))


class InMemoryUnitOfWork(AbstractUnitOfWork):
    def __init__(self, store: InMemoryStore, *, readonly: bool = False) -> None:
        super().__init__(readonly=readonly)
        self.store = store
        self._undo: list[Callable[[], None]] = []

    def on_rollback(self, fn: Callable[[], None]) -> None:
        self._undo.append(fn)

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        self.payment_repository = InMemoryPaymentRepository(self.store, self)
        self.audit_repository = InMemoryAuditRepository(self.store, self)
        self.coupon_repository = InMemoryCouponRepository(self.store, self)
        self.enrollment_repository = InMemoryEnrollmentRepository(self.store, self)
        self.catalog_repository = InMemoryCatalogRepository(self.store, self)
        return self

    async def commit(self) -> None:
        self._undo.clear()
        self._committed = True

    async def rollback(self) -> None:
        while self._undo:
            self._undo.pop()()
        self._committed = False


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.events = []
        self.fail = fail

    def publish(self, event) -> None:
        if self.fail:
            raise RuntimeError("broker down")
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [e.name for e in self.events]


class StubSlipVerifier:
    name = "stub"

    def __init__(self, verdict: Optional[SlipVerdict] = None, error: Optional[Exception] = None) -> None:
        self.verdict = verdict
        self.error = error
        self.calls: list[SlipVerificationRequest] = []

    async def verify(self, req: SlipVerificationRequest) -> SlipVerdict:
        self.calls.append(req)
        if self.error is not None:
            raise self.error
        if self.verdict is not None:
            return self.verdict
        return SlipVerdict(matched=True, extracted_amount=req.expected_amount, confidence=1.0, raw_reference="ref-1")

    async def aclose(self) -> None:
        return None


class StubSlipStorage:
    def __init__(self) -> None:
        self.saved: list[str] = []

    async def save(self, payment_id: str, data: bytes, *, content_type: str, filename: str) -> StoredSlip:
        reference = f"slips/{payment_id}.jpg"
        self.saved.append(reference)
        return StoredSlip(reference=reference, size=len(data), content_type=content_type)


class StubGateway:
    """Card gateway double; `outcome` is what the next webhook verifies to."""

    provider = "stub"

    def __init__(self) -> None:
        self.sessions: list[CheckoutSessionRequest] = []
        self.session_error: Optional[Exception] = None
        self.outcome: Optional[GatewayOutcome] = None

    async def create_checkout_session(self, req: CheckoutSessionRequest) -> CheckoutSession:
        if self.session_error is not None:
            raise self.session_error
        self.sessions.append(req)
        return CheckoutSession(
            session_id=f"cs_{req.payment_id}",
            redirect_url=f"https://pay.example/{req.payment_id}",
            provider=self.provider,
        )

    def verify_webhook(self, headers: dict[str, str], body: bytes) -> GatewayOutcome:
        if headers.get("x-signature") != "valid" or self.outcome is None:
            raise WebhookSignatureException(self.provider)
        return self.outcome

    async def aclose(self) -> None:
        return None


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.add_course("c1", "500.00", title="Python Basics")
    s.add_course("c2", "700.00", title="Async Python")
    s.add_bundle("b1", "900.00", ["c1", "c2"], title="Python Track")
    s.add_user("u1", "Somchai", "somchai@example.com")
    return s


@pytest.fixture
def uow_factory(store: InMemoryStore):
    def factory(*, readonly: bool = False) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(store, readonly=readonly)
    return factory


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def verifier() -> StubSlipVerifier:
    return StubSlipVerifier()


@pytest.fixture
def slip_storage() -> StubSlipStorage:
    return StubSlipStorage()


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()
