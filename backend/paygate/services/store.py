"""
Transaction Store

Single source of truth for payment status.

Contract:
- put(payment) inserts a new record, ids are never reused
- get(id) returns the latest committed record or raises NotFoundError
- update(id, mutator) applies mutator(current) -> new atomically per id;
  at most one writer per id at any instant, no ordering across ids

InMemoryTransactionStore backs a single process (safe under threads).
SqlAlchemyTransactionStore is a drop-in replacement backed by SQLite.
"""
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from ..db.init_db import create_session_factory
from ..db.models import PaymentModel
from ..exceptions import DuplicatePaymentError, InvalidTransitionError, NotFoundError
from ..models.payments import Payment, PaymentStatus

logger = logging.getLogger(__name__)

PaymentMutator = Callable[[Payment], Payment]


class TransactionStore(ABC):
    """Abstract payment store. All implementations share the per-id atomicity contract."""

    @abstractmethod
    async def put(self, payment: Payment) -> Payment:
        ...

    @abstractmethod
    async def get(self, payment_id: str) -> Payment:
        ...

    @abstractmethod
    async def update(self, payment_id: str, mutator: PaymentMutator) -> Payment:
        ...

    @abstractmethod
    async def find_by_provider_reference(self, provider_reference: str) -> Optional[Payment]:
        ...

    @abstractmethod
    async def list_pending(self, older_than: Optional[datetime] = None) -> List[Payment]:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    async def close(self) -> None:
        """Release backend resources. No-op by default."""


def _check_same_identity(current: Payment, updated: Payment) -> None:
    if updated.id != current.id:
        raise InvalidTransitionError(
            f"Mutator changed payment id {current.id} -> {updated.id}",
            {"id": current.id},
        )


# ============================================================================
# In-Memory Store
# ============================================================================

class InMemoryTransactionStore(TransactionStore):
    """
    Dict-backed store.

    A registry lock guards the dicts; each payment id has its own lock that
    serializes updates to that id. Mutators run while the id lock is held and
    must not block.
    """

    def __init__(self):
        self._payments: Dict[str, Payment] = {}
        self._by_provider_reference: Dict[str, str] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    async def put(self, payment: Payment) -> Payment:
        with self._registry_lock:
            if payment.id in self._payments:
                raise DuplicatePaymentError(payment.id)
            self._payments[payment.id] = payment
            self._locks[payment.id] = threading.Lock()
            if payment.provider_reference:
                self._by_provider_reference[payment.provider_reference] = payment.id
        return payment

    async def get(self, payment_id: str) -> Payment:
        with self._registry_lock:
            payment = self._payments.get(payment_id)
        if payment is None:
            raise NotFoundError(payment_id)
        return payment

    async def update(self, payment_id: str, mutator: PaymentMutator) -> Payment:
        with self._registry_lock:
            lock = self._locks.get(payment_id)
        if lock is None:
            raise NotFoundError(payment_id)

        with lock:
            with self._registry_lock:
                current = self._payments[payment_id]
            updated = mutator(current)
            _check_same_identity(current, updated)

            with self._registry_lock:
                ref = updated.provider_reference
                if ref and ref != current.provider_reference:
                    owner = self._by_provider_reference.get(ref)
                    if owner is not None and owner != payment_id:
                        raise InvalidTransitionError(
                            f"Provider reference {ref} already belongs to {owner}",
                            {"id": payment_id},
                        )
                    self._by_provider_reference[ref] = payment_id
                self._payments[payment_id] = updated
        logger.debug(f"Updated payment {payment_id}: status={updated.status.value}")
        return updated

    async def find_by_provider_reference(self, provider_reference: str) -> Optional[Payment]:
        with self._registry_lock:
            payment_id = self._by_provider_reference.get(provider_reference)
            return self._payments.get(payment_id) if payment_id else None

    async def list_pending(self, older_than: Optional[datetime] = None) -> List[Payment]:
        with self._registry_lock:
            payments = list(self._payments.values())
        return [
            p for p in payments
            if p.status == PaymentStatus.PENDING
            and (older_than is None or p.created_at < older_than)
        ]

    async def count(self) -> int:
        with self._registry_lock:
            return len(self._payments)


# ============================================================================
# SQLAlchemy Store
# ============================================================================

def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite has no timezone support; persist everything as naive UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


def _aware_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_payment(row: PaymentModel) -> Payment:
    amount = row.amount
    if isinstance(amount, float) and amount.is_integer():
        amount = int(amount)
    return Payment(
        id=row.id,
        amount=amount,
        phone=row.phone,
        reference=row.reference,
        status=PaymentStatus(row.status),
        created_at=_aware_utc(row.created_at),
        completed_at=_aware_utc(row.completed_at),
        provider_reference=row.provider_reference,
        merchant_request_id=row.merchant_request_id,
        result_code=row.result_code,
        result_desc=row.result_desc,
        receipt_number=row.receipt_number,
    )


def _mutable_values(payment: Payment) -> Dict[str, object]:
    return {
        "status": payment.status.value,
        "completed_at": _naive_utc(payment.completed_at),
        "provider_reference": payment.provider_reference,
        "merchant_request_id": payment.merchant_request_id,
        "result_code": payment.result_code,
        "result_desc": payment.result_desc,
        "receipt_number": payment.receipt_number,
    }


def _apply_to_row(row: PaymentModel, payment: Payment) -> None:
    for column, value in _mutable_values(payment).items():
        setattr(row, column, value)


# Per-id asyncio locks are striped so the lock table stays bounded
LOCK_STRIPES = 64

# Compare-and-swap attempts before update() gives up on a contended id
MAX_UPDATE_ATTEMPTS = 5


class SqlAlchemyTransactionStore(TransactionStore):
    """
    Database-backed store over an async SQLAlchemy engine.

    update() is a compare-and-swap: it reads the row, applies the mutator and
    writes with UPDATE ... WHERE status and provider_reference still match
    what was read. A miss means another writer (possibly another worker
    process sharing the database file) got there first; the row is re-read
    and the mutator re-applied. Mutators must therefore be pure functions of
    the record they are given.

    Within a worker a striped asyncio lock serializes writers to the same id
    so the common case never retries.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        self._locks: List[asyncio.Lock] = [asyncio.Lock() for _ in range(LOCK_STRIPES)]

    def _lock_for(self, payment_id: str) -> asyncio.Lock:
        return self._locks[hash(payment_id) % LOCK_STRIPES]

    async def put(self, payment: Payment) -> Payment:
        row = PaymentModel(
            id=payment.id,
            amount=float(payment.amount),
            phone=payment.phone,
            reference=payment.reference,
            created_at=_naive_utc(payment.created_at),
        )
        _apply_to_row(row, payment)

        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicatePaymentError(payment.id) from e
        return payment

    async def get(self, payment_id: str) -> Payment:
        async with self._session_factory() as session:
            row = await session.get(PaymentModel, payment_id)
            if row is None:
                raise NotFoundError(payment_id)
            return _row_to_payment(row)

    async def update(self, payment_id: str, mutator: PaymentMutator) -> Payment:
        async with self._lock_for(payment_id):
            for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
                current = await self.get(payment_id)
                updated = mutator(current)
                _check_same_identity(current, updated)

                if await self._compare_and_swap(current, updated):
                    logger.debug(f"Updated payment {payment_id}: status={updated.status.value}")
                    return updated

                logger.info(f"Concurrent write to payment {payment_id}, retrying (attempt {attempt})")

        raise InvalidTransitionError(
            f"Payment {payment_id} kept changing during update",
            {"id": payment_id},
        )

    async def _compare_and_swap(self, current: Payment, updated: Payment) -> bool:
        # "== None" renders IS NULL for a not-yet-linked payment
        statement = (
            update(PaymentModel)
            .where(
                PaymentModel.id == current.id,
                PaymentModel.status == current.status.value,
                PaymentModel.provider_reference == current.provider_reference,
            )
            .values(**_mutable_values(updated))
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    result = await session.execute(statement)
            except IntegrityError as e:
                raise InvalidTransitionError(
                    f"Provider reference {updated.provider_reference} already belongs to another payment",
                    {"id": current.id},
                ) from e
        return result.rowcount == 1

    async def find_by_provider_reference(self, provider_reference: str) -> Optional[Payment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentModel).where(PaymentModel.provider_reference == provider_reference)
            )
            row = result.scalar_one_or_none()
            return _row_to_payment(row) if row else None

    async def list_pending(self, older_than: Optional[datetime] = None) -> List[Payment]:
        query = select(PaymentModel).where(PaymentModel.status == PaymentStatus.PENDING.value)
        if older_than is not None:
            query = query.where(PaymentModel.created_at < _naive_utc(older_than))
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(PaymentModel.created_at))
            return [_row_to_payment(row) for row in result.scalars().all()]

    async def count(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(PaymentModel))
            return result.scalar_one()

    async def close(self) -> None:
        await self._engine.dispose()
