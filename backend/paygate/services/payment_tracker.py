"""
Payment Tracker

Owns the payment lifecycle:

    intake -> PENDING record (returned immediately)
           -> demo mode:     timer job marks SUCCESS after a fixed delay
           -> provider mode: push job submits the STK push, stores the
                             CheckoutRequestID, and the Daraja callback
                             later reconciles SUCCESS or FAILED

Every status change goes through TransactionStore.update, so completions from
timers, callbacks, status queries and the stale sweep never race each other
on the same payment.
"""
import logging
from collections import OrderedDict
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from ..config import Settings
from ..exceptions import (
    AuthenticationError,
    DuplicatePaymentError,
    PaymentGatewayError,
    PushFailedError,
)
from ..models.daraja import StkCallback, StkPushAcknowledgement
from ..models.payments import Payment, PaymentOutcome, PaymentStatus, utcnow
from .audit_log import AuditLog
from .daraja_client import DarajaClient
from .identifiers import generate_payment_id, generate_reference
from .scheduler import CompletionScheduler
from .store import TransactionStore
from .validation import ValidatedPayment, ValidationProfile, validate_payment_input

logger = logging.getLogger(__name__)

COMPLETION_MODES = ("demo", "provider")
REJECTION_POLICIES = ("mark_failed", "leave_pending")

# STK query ResultCodes that are final failures
QUERY_FAILURE_CODES = frozenset({"1", "1019", "1032", "1037", "2001"})

STALE_SWEEP_JOB_ID = "expire-stale-payments"
STALE_RESULT_DESC = "Timed out awaiting provider result"

# Attempts at drawing a fresh id before giving up
MAX_ID_ATTEMPTS = 3

# Outcomes held for references whose push acknowledgment has not been stored yet
MAX_UNMATCHED_OUTCOMES = 1000


class PaymentTracker:
    """
    Lifecycle orchestrator over a store, a scheduler and the Daraja client.

    Args:
        store: Transaction store (single source of truth)
        scheduler: Scheduler that runs detached completion work
        provider_client: Daraja client; required for provider mode, /stk_push
            and status refresh
        completion_mode: "demo" or "provider"
        demo_completion_delay_seconds: Delay before demo payments succeed
        validation_profile: Profile used by initiate()
        push_rejection_policy: "mark_failed" or "leave_pending" when a push
            is rejected or errors
        pending_timeout_seconds: Age after which PENDING payments are expired
            by the sweep; None disables it
        audit_log: Audit trail for push requests
    """

    def __init__(
        self,
        store: TransactionStore,
        scheduler: CompletionScheduler,
        provider_client: Optional[DarajaClient] = None,
        completion_mode: str = "demo",
        demo_completion_delay_seconds: float = 2.0,
        validation_profile: ValidationProfile = ValidationProfile.GENERIC,
        push_rejection_policy: str = "mark_failed",
        pending_timeout_seconds: Optional[float] = None,
        stale_sweep_interval_seconds: float = 60.0,
        audit_log: Optional[AuditLog] = None,
    ):
        if completion_mode not in COMPLETION_MODES:
            raise ValueError(f"completion_mode must be one of {COMPLETION_MODES}")
        if push_rejection_policy not in REJECTION_POLICIES:
            raise ValueError(f"push_rejection_policy must be one of {REJECTION_POLICIES}")
        if completion_mode == "provider" and provider_client is None:
            raise ValueError("provider completion mode requires a provider client")

        self.store = store
        self.scheduler = scheduler
        self.provider_client = provider_client
        self.completion_mode = completion_mode
        self.demo_completion_delay_seconds = demo_completion_delay_seconds
        self.validation_profile = ValidationProfile(validation_profile)
        self.push_rejection_policy = push_rejection_policy
        self.pending_timeout_seconds = pending_timeout_seconds
        self.stale_sweep_interval_seconds = stale_sweep_interval_seconds
        self.audit_log = audit_log
        self._unmatched_outcomes: "OrderedDict[str, PaymentOutcome]" = OrderedDict()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: TransactionStore,
        scheduler: CompletionScheduler,
        provider_client: Optional[DarajaClient],
        audit_log: Optional[AuditLog] = None,
    ) -> "PaymentTracker":
        return cls(
            store=store,
            scheduler=scheduler,
            provider_client=provider_client,
            completion_mode=settings.completion_mode,
            demo_completion_delay_seconds=settings.demo_completion_delay_seconds,
            validation_profile=ValidationProfile(settings.validation_profile),
            push_rejection_policy=settings.push_rejection_policy,
            pending_timeout_seconds=settings.pending_timeout_seconds,
            stale_sweep_interval_seconds=settings.stale_sweep_interval_seconds,
            audit_log=audit_log,
        )

    def start_background_jobs(self) -> None:
        """Register recurring jobs (the stale sweep, when enabled)."""
        if self.pending_timeout_seconds:
            self.scheduler.add_interval_job(
                STALE_SWEEP_JOB_ID,
                self.expire_stale_payments,
                interval_seconds=self.stale_sweep_interval_seconds,
            )

    # ========================================================================
    # Intake
    # ========================================================================

    async def initiate(
        self,
        amount: Any,
        phone: Any,
        reference: Optional[str] = None,
    ) -> Payment:
        """
        Accept a payment request and return its PENDING record.

        Validation failures raise before anything is stored or sent. The
        completion (demo timer or STK push) is scheduled, never awaited.

        Raises:
            ValidationError: every violated rule, listed together
        """
        validated = validate_payment_input(amount, phone, self.validation_profile)
        payment = await self._create_pending(validated, reference)

        if self.completion_mode == "demo":
            self.scheduler.schedule_once(
                f"complete:{payment.id}",
                self.complete_demo_payment,
                delay_seconds=self.demo_completion_delay_seconds,
                payment_id=payment.id,
            )
        else:
            self.scheduler.schedule_once(
                f"push:{payment.id}",
                self.submit_push,
                payment_id=payment.id,
            )

        return payment

    async def push_payment(
        self,
        phone: Any,
        amount: Any,
    ) -> Tuple[Payment, StkPushAcknowledgement]:
        """
        Validate under the provider profile and submit the STK push inline.

        A PENDING record is created first so the later callback can be
        reconciled against it.

        Returns:
            (payment linked to the CheckoutRequestID, acknowledgment)

        Raises:
            ValidationError: invalid phone or amount (no record created)
            AuthenticationError / PushFailedError: provider failure; the
                rejection policy has already been applied to the record
        """
        validated = validate_payment_input(amount, phone, ValidationProfile.PROVIDER)
        client = self._require_provider()
        payment = await self._create_pending(validated, None)
        self._audit_push_request(payment)

        try:
            ack = await client.stk_push(payment.phone, payment.amount)
        except (AuthenticationError, PushFailedError) as e:
            await self._apply_rejection_policy(payment.id, e)
            raise

        payment = await self._attach_acknowledgement(payment.id, ack)
        return payment, ack

    async def _create_pending(self, validated: ValidatedPayment, reference: Optional[str]) -> Payment:
        reference = reference or generate_reference()
        for attempt in range(1, MAX_ID_ATTEMPTS + 1):
            payment = Payment(
                id=generate_payment_id(),
                amount=validated.amount,
                phone=validated.phone,
                reference=reference,
            )
            try:
                await self.store.put(payment)
            except DuplicatePaymentError:
                logger.warning(f"Payment id collision on attempt {attempt}, retrying")
                continue
            logger.info(
                f"Created payment {payment.id}: amount={payment.amount}, "
                f"reference={payment.reference}, mode={self.completion_mode}"
            )
            return payment
        raise DuplicatePaymentError(payment.id)

    # ========================================================================
    # Completion Jobs
    # ========================================================================

    async def complete_demo_payment(self, payment_id: str) -> Payment:
        """Demo timer job: mark the payment SUCCESS if it is still PENDING."""
        payment, applied = await self._complete_if_pending(payment_id, PaymentStatus.SUCCESS)
        if applied:
            logger.info(f"Demo completion: payment {payment_id} -> SUCCESS")
        return payment

    async def submit_push(self, payment_id: str) -> Payment:
        """
        Provider push job for a payment accepted by initiate().

        On acceptance the CheckoutRequestID is stored and the payment stays
        PENDING until the callback. On rejection the rejection policy applies.
        """
        payment = await self.store.get(payment_id)
        if payment.is_terminal:
            logger.info(f"Skipping push for {payment_id}: already {payment.status.value}")
            return payment

        client = self._require_provider()
        self._audit_push_request(payment)

        try:
            ack = await client.stk_push(payment.phone, payment.amount)
        except (AuthenticationError, PushFailedError) as e:
            logger.warning(f"STK push for payment {payment_id} failed: {e.message}")
            return await self._apply_rejection_policy(payment_id, e)

        return await self._attach_acknowledgement(payment_id, ack)

    async def expire_stale_payments(self) -> int:
        """
        Mark PENDING payments older than pending_timeout_seconds FAILED.

        Returns:
            Number of payments expired by this run
        """
        if not self.pending_timeout_seconds:
            return 0

        cutoff = utcnow() - timedelta(seconds=self.pending_timeout_seconds)
        expired = 0
        for payment in await self.store.list_pending(older_than=cutoff):
            _, applied = await self._complete_if_pending(
                payment.id,
                PaymentStatus.FAILED,
                result_desc=STALE_RESULT_DESC,
            )
            if applied:
                expired += 1

        if expired:
            logger.info(f"Expired {expired} stale pending payments")
        return expired

    # ========================================================================
    # Reconciliation
    # ========================================================================

    async def reconcile(
        self,
        provider_reference: str,
        outcome: PaymentOutcome,
    ) -> Optional[Payment]:
        """
        Apply a provider outcome to the payment with this provider reference.

        The provider can call back before the push acknowledgment has been
        stored. Outcomes for unknown references are therefore held (bounded,
        oldest dropped first) and applied once a push with that
        CheckoutRequestID is linked; references that never get linked are
        effectively discarded. The provider is acknowledged either way.

        Returns:
            The current payment, or None if the reference is unknown
        """
        payment = await self.store.find_by_provider_reference(provider_reference)
        if payment is None:
            logger.warning(f"Holding result for unknown provider reference {provider_reference}")
            self._hold_unmatched_outcome(provider_reference, outcome)
            return None

        updated, applied = await self._complete_if_pending(
            payment.id,
            outcome.status,
            result_code=outcome.result_code,
            result_desc=outcome.result_desc,
            receipt_number=outcome.receipt_number,
        )
        if applied:
            logger.info(
                f"Reconciled payment {payment.id} ({provider_reference}) -> "
                f"{updated.status.value}, result_code={outcome.result_code}"
            )
        else:
            logger.info(
                f"Ignoring result for payment {payment.id}: already {updated.status.value}"
            )
        return updated

    async def reconcile_callback(self, payload: Dict[str, Any]) -> Optional[Payment]:
        """
        Reconcile a raw Daraja callback body.

        Raises:
            ValueError: payload is not a Daraja STK callback
        """
        callback = StkCallback.from_payload(payload)
        return await self.reconcile(callback.checkout_request_id, callback.to_outcome())

    async def refresh_status(self, payment_id: str) -> Payment:
        """
        Ask the provider for the outcome of a PENDING payment.

        Terminal payments and payments without a provider reference are
        returned unchanged. Results that are neither success nor a known
        failure leave the payment PENDING.

        Raises:
            NotFoundError: unknown payment id
            AuthenticationError / PushFailedError: provider query failed
        """
        payment = await self.store.get(payment_id)
        if payment.is_terminal or not payment.provider_reference:
            return payment

        result = await self._require_provider().query_stk_status(payment.provider_reference)
        if result.result_code == "0":
            status = PaymentStatus.SUCCESS
        elif result.result_code in QUERY_FAILURE_CODES:
            status = PaymentStatus.FAILED
        else:
            logger.info(f"Status query for {payment_id} still pending (code={result.result_code})")
            return payment

        updated, _ = await self._complete_if_pending(
            payment_id,
            status,
            result_code=result.result_code,
            result_desc=result.result_desc,
        )
        return updated

    # ========================================================================
    # Status
    # ========================================================================

    async def get_status(self, payment_id: str) -> Payment:
        """
        Return the current payment record.

        Raises:
            NotFoundError: unknown payment id
        """
        return await self.store.get(payment_id)

    # ========================================================================
    # Helpers
    # ========================================================================

    def _require_provider(self) -> DarajaClient:
        if self.provider_client is None:
            raise PushFailedError("Payment provider is not configured")
        return self.provider_client

    async def _complete_if_pending(
        self,
        payment_id: str,
        status: PaymentStatus,
        **fields: Any,
    ) -> Tuple[Payment, bool]:
        applied = False

        def mutate(current: Payment) -> Payment:
            nonlocal applied
            # The store may re-apply the mutator after a concurrent write
            applied = not current.is_terminal
            if not applied:
                return current
            return current.complete(status, **fields)

        payment = await self.store.update(payment_id, mutate)
        return payment, applied

    async def _attach_acknowledgement(self, payment_id: str, ack: StkPushAcknowledgement) -> Payment:
        if not ack.checkout_request_id:
            logger.warning(f"Accepted push for {payment_id} carried no CheckoutRequestID")
            return await self.store.get(payment_id)

        payment = await self.store.update(
            payment_id,
            lambda current: current.with_provider_reference(
                ack.checkout_request_id, ack.merchant_request_id
            ),
        )
        logger.info(f"Payment {payment_id} awaiting callback for {ack.checkout_request_id}")

        early_outcome = self._unmatched_outcomes.pop(ack.checkout_request_id, None)
        if early_outcome is not None:
            logger.info(f"Applying result that arrived before {ack.checkout_request_id} was linked")
            return await self.reconcile(ack.checkout_request_id, early_outcome)
        return payment

    def _hold_unmatched_outcome(self, provider_reference: str, outcome: PaymentOutcome) -> None:
        self._unmatched_outcomes[provider_reference] = outcome
        self._unmatched_outcomes.move_to_end(provider_reference)
        while len(self._unmatched_outcomes) > MAX_UNMATCHED_OUTCOMES:
            self._unmatched_outcomes.popitem(last=False)

    async def _apply_rejection_policy(self, payment_id: str, error: PaymentGatewayError) -> Payment:
        if self.push_rejection_policy == "leave_pending":
            logger.warning(f"Push rejected for {payment_id}; leaving PENDING per policy")
            return await self.store.get(payment_id)

        response_code = error.details.get("response_code")
        payment, applied = await self._complete_if_pending(
            payment_id,
            PaymentStatus.FAILED,
            result_code=str(response_code) if response_code is not None else None,
            result_desc=error.message,
        )
        if applied:
            logger.info(f"Payment {payment_id} -> FAILED after push rejection")
        return payment

    def _audit_push_request(self, payment: Payment) -> None:
        if self.audit_log is not None:
            self.audit_log.write("request", {
                "payment_id": payment.id,
                "phone": payment.phone,
                "amount": payment.amount,
            })
