"""
Payment Service
===============

Payment records for orders and the guards around them. Provider SDK calls
(creating intents, verifying webhook signatures) happen elsewhere; this
module only decides what may be written and writes it.

Key Functions:
--------------
- can_create_payment_for_order: Whether an order may start a payment
- get_active_payment_for_order: Latest payment that is not failed/cancelled
- create_payment_record: Insert a payment row, at most one active per order
- update_payment_status: Guarded status transition
- get_payment_by_provider_intent: Lookup by provider + intent id
- reconcile_deferred_webhook_for_intent: Apply stored webhook events

Payment Statuses:
-----------------
    intent_created -> pending -> processing -> authorized -> paid
                                                          -> failed
                                                          -> cancelled

``authorized`` means the provider holds the funds but has not captured
them; it still counts as active. ``paid`` and ``cancelled`` are final. A
``failed`` payment may only be cancelled, never moved back to an active
state; a retry is a new payment row.

Webhook Events:
---------------
Provider events are stored in ``payment_webhook_events`` as they arrive. An
event that arrives before its payment row exists stays unprocessed
(``processed_at`` NULL) until ``reconcile_deferred_webhook_for_intent`` runs
for that intent. Each event is applied at most once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import DEFAULT_CURRENCY
from ..db import transaction
from ..errors import PaymentConflictError
from ..logging_config import safe_log_context
from ..models import Order, OrderStatusHistory, Payment, PaymentWebhookEvent, utcnow
from .helpers import load_json, to_float, to_int
from .orders import GuardResult

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = ("intent_created", "pending", "processing", "authorized", "paid", "failed", "cancelled")
FINAL_PAYMENT_STATUSES = ("paid", "cancelled")
INACTIVE_PAYMENT_STATUSES = ("failed", "cancelled")

# Order states from which a payment may be started
PAYABLE_ORDER_STATUSES = ("placed", "pending_payment")

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"


@dataclass
class PaymentRecordResult:
    success: bool
    reason: str
    payment_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "reason": self.reason, "payment_id": self.payment_id}


@dataclass
class ReconcileResult:
    """Outcome of replaying stored webhook events for one intent."""

    reason: str
    payment_id: Optional[int] = None
    payment_status: Optional[str] = None
    events_processed: int = 0
    outcomes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason,
            "payment_id": self.payment_id,
            "payment_status": self.payment_status,
            "events_processed": self.events_processed,
            "outcomes": list(self.outcomes),
        }


# =============================================================================
# Lookups and guards
# =============================================================================

def get_active_payment_for_order(db: Session, order_id: Any, lock: bool = False) -> Optional[Payment]:
    """Newest payment for ``order_id`` that is neither failed nor cancelled."""
    order_id = to_int(order_id)
    if order_id <= 0:
        return None

    query = (
        db.query(Payment)
        .filter(Payment.order_id == order_id, Payment.status.notin_(INACTIVE_PAYMENT_STATUSES))
        .order_by(Payment.id.desc())
    )
    if lock:
        query = query.with_for_update()
    return query.first()


def get_payment_by_provider_intent(db: Session, provider: Any, provider_intent_id: Any) -> Optional[Payment]:
    provider = str(provider or "").strip()
    provider_intent_id = str(provider_intent_id or "").strip()
    if not provider or not provider_intent_id:
        return None

    return (
        db.query(Payment)
        .filter(Payment.provider == provider, Payment.provider_intent_id == provider_intent_id)
        .first()
    )


def _check_order_payable(db: Session, order_id: int, lock: bool = False) -> GuardResult:
    """
    Order-side payment checks. With ``lock`` the order row is read FOR
    UPDATE first, which serializes payment creation per order even when the
    order has no payment rows yet.
    """
    query = db.query(Order).filter(Order.id == order_id)
    if lock:
        query = query.with_for_update()
    order = query.first()
    if order is None:
        return GuardResult(False, "ORDER_NOT_FOUND")

    if order.payment_status == "paid":
        return GuardResult(False, "ORDER_ALREADY_PAID")

    if order.status not in PAYABLE_ORDER_STATUSES:
        return GuardResult(False, "ORDER_NOT_PAYABLE", {"order_status": order.status})

    snapshot = load_json(order.totals_snapshot)
    if not isinstance(snapshot, dict):
        return GuardResult(False, "SNAPSHOT_MISSING")
    if snapshot.get("is_snapshot_locked") is not True:
        return GuardResult(False, "SNAPSHOT_NOT_LOCKED")

    active = get_active_payment_for_order(db, order_id, lock=lock)
    if active is not None:
        return GuardResult(False, "ACTIVE_PAYMENT_EXISTS", {"payment_id": active.id})

    total = to_float(order.total)
    if total <= 0:
        return GuardResult(False, "INVALID_TOTAL")

    return GuardResult(True, "OK", {"total": total})


def can_create_payment_for_order(db: Session, order_id: Any) -> GuardResult:
    """
    Check that an order may start a new payment.

    Reasons: INVALID_ORDER_ID, ORDER_NOT_FOUND, ORDER_ALREADY_PAID,
    ORDER_NOT_PAYABLE, SNAPSHOT_MISSING, SNAPSHOT_NOT_LOCKED,
    ACTIVE_PAYMENT_EXISTS, INVALID_TOTAL, or OK.
    """
    order_id = to_int(order_id)
    if order_id <= 0:
        return GuardResult(False, "INVALID_ORDER_ID")

    try:
        return _check_order_payable(db, order_id)
    except Exception:
        logger.exception("Payment guard failed for order %s", order_id)
        return GuardResult(False, "GUARD_ERROR")


# =============================================================================
# Writers
# =============================================================================

def create_payment_record(
    db: Session,
    order_id: Any,
    provider: Any,
    provider_intent_id: Any,
    checkout_attempt_key: Any,
    amount: Any,
    currency: Any = DEFAULT_CURRENCY,
    status: str = "intent_created",
) -> PaymentRecordResult:
    """
    Insert a payment row for an order.

    Inside the transaction the order row is locked FOR UPDATE and every
    order-side guard is re-run under that lock before the insert, so two
    concurrent checkouts for one order cannot both insert an active payment.

    Args:
        amount: Amount in cents, must be positive
        checkout_attempt_key: Client-side idempotency key, unique per attempt

    Reasons: INVALID_INPUT, any guard reason from
    can_create_payment_for_order (ORDER_NOT_FOUND, ORDER_NOT_PAYABLE,
    ACTIVE_PAYMENT_EXISTS, ...), DUPLICATE_ATTEMPT_KEY, INSERT_FAILED, or
    CREATED.
    """
    order_id = to_int(order_id)
    provider = str(provider or "").strip()
    provider_intent_id = str(provider_intent_id or "").strip()
    checkout_attempt_key = str(checkout_attempt_key or "").strip()
    amount = to_int(amount)
    currency = str(currency or DEFAULT_CURRENCY).strip().lower()

    if (
        order_id <= 0
        or not provider
        or not provider_intent_id
        or not checkout_attempt_key
        or amount <= 0
        or status not in PAYMENT_STATUSES
    ):
        return PaymentRecordResult(False, "INVALID_INPUT")

    try:
        with transaction(db):
            guard = _check_order_payable(db, order_id, lock=True)
            if not guard.allowed:
                raise PaymentConflictError(guard.reason, extra=dict(guard.details))

            duplicate = (
                db.query(Payment.id)
                .filter(Payment.checkout_attempt_key == checkout_attempt_key)
                .first()
            )
            if duplicate is not None:
                raise PaymentConflictError("DUPLICATE_ATTEMPT_KEY", extra={"payment_id": duplicate.id})

            payment = Payment(
                order_id=order_id,
                provider=provider,
                provider_intent_id=provider_intent_id,
                checkout_attempt_key=checkout_attempt_key,
                amount=amount,
                currency=currency,
                status=status,
            )
            db.add(payment)
            db.flush()
            payment_id = payment.id
    except PaymentConflictError as e:
        logger.warning(
            "Payment not created: %s %s",
            e.reason,
            safe_log_context({"order_id": order_id, "provider": provider, **e.extra}),
        )
        return PaymentRecordResult(False, e.reason, e.extra.get("payment_id"))
    except IntegrityError:
        # Lost the race on the attempt key's unique constraint
        logger.warning("Payment insert hit a unique constraint for order %s", order_id)
        return PaymentRecordResult(False, "DUPLICATE_ATTEMPT_KEY")
    except Exception:
        logger.exception("Payment insert failed for order %s", order_id)
        return PaymentRecordResult(False, "INSERT_FAILED")

    logger.info("Payment created %s", safe_log_context({"payment_id": payment_id, "order_id": order_id, "amount": amount}))
    return PaymentRecordResult(True, "CREATED", payment_id)


def _transition_allowed(current: str, new_status: str) -> Optional[str]:
    """Rejection reason for ``current -> new_status``, or None when allowed."""
    if new_status not in PAYMENT_STATUSES:
        return "UNKNOWN_STATUS"
    if current in FINAL_PAYMENT_STATUSES:
        return "PAYMENT_FINAL"
    if current == "failed" and new_status not in ("failed", "cancelled"):
        return "PAYMENT_FAILED"
    return None


def _set_payment_status(payment: Payment, new_status: str, now: Optional[datetime] = None) -> Optional[str]:
    rejection = _transition_allowed(payment.status, new_status)
    if rejection is not None:
        return rejection
    old_status = payment.status
    payment.status = new_status
    payment.updated_at = now or utcnow()
    logger.info("Payment %s status %s -> %s", payment.id, old_status, new_status)
    return None


def update_payment_status(db: Session, payment_id: Any, new_status: Any) -> GuardResult:
    """
    Move a payment to ``new_status``.

    Reasons: UNKNOWN_STATUS, PAYMENT_NOT_FOUND, PAYMENT_FINAL (paid and
    cancelled never change), PAYMENT_FAILED (a failed payment may only be
    cancelled), or UPDATED.
    """
    payment_id = to_int(payment_id)
    new_status = str(new_status or "").strip().lower()

    if new_status not in PAYMENT_STATUSES:
        return GuardResult(False, "UNKNOWN_STATUS")

    try:
        with transaction(db):
            payment = db.query(Payment).filter(Payment.id == payment_id).with_for_update().first()
            if payment is None:
                raise PaymentConflictError("PAYMENT_NOT_FOUND")

            rejection = _set_payment_status(payment, new_status)
            if rejection is not None:
                raise PaymentConflictError(rejection, extra={"current_status": payment.status})
    except PaymentConflictError as e:
        logger.warning("Payment %s not updated to %s: %s", payment_id, new_status, e.reason)
        return GuardResult(False, e.reason, dict(e.extra))
    except Exception:
        logger.exception("Payment status update failed for payment %s", payment_id)
        return GuardResult(False, "UPDATE_FAILED")

    return GuardResult(True, "UPDATED", {"status": new_status})


# =============================================================================
# Webhook reconciliation
# =============================================================================

def _apply_event(db: Session, event: PaymentWebhookEvent, payment: Payment, order: Order, now: datetime) -> str:
    """Apply one stored event to a locked payment/order pair. Returns the outcome tag."""
    if payment.currency and event.currency:
        if payment.currency.lower() != event.currency.lower():
            _set_payment_status(payment, "failed", now)
            return "currency_mismatch"

    if payment.status in FINAL_PAYMENT_STATUSES:
        return "already_final"

    if event.event_type == EVENT_SUCCEEDED:
        received = to_int(event.amount)
        expected = to_int(payment.amount)
        if received <= 0:
            _set_payment_status(payment, "failed", now)
            return "invalid_amount"
        if expected <= 0:
            _set_payment_status(payment, "failed", now)
            return "invalid_payment_record"
        if received != expected:
            _set_payment_status(payment, "failed", now)
            return "amount_mismatch"

        rejection = _set_payment_status(payment, "paid", now)
        if rejection is not None:
            return rejection.lower()

        order.payment_status = "paid"
        if order.status in PAYABLE_ORDER_STATUSES:
            order.status = "confirmed"
            db.add(OrderStatusHistory(order_id=order.id, status="confirmed", created_at=now))
        order.updated_at = now
        return "paid"

    if event.event_type == EVENT_FAILED:
        rejection = _set_payment_status(payment, "failed", now)
        if rejection is not None:
            return rejection.lower()
        order.payment_status = "failed"
        order.updated_at = now
        return "failed"

    return "ignored"


def reconcile_deferred_webhook_for_intent(
    db: Session,
    provider: Any,
    intent_id: Any,
    now: Optional[datetime] = None,
) -> ReconcileResult:
    """
    Apply stored, unprocessed webhook events for one payment intent.

    Runs in a single transaction with the payment and order rows locked.
    Only events with ``processed_at`` NULL are considered, oldest first, and
    each is stamped processed whatever its outcome, so calling this twice
    never double-applies an event.

    Reasons: INVALID_INPUT, PAYMENT_NOT_FOUND (events left for a later
    run), ORDER_NOT_FOUND (events marked processed), NO_PENDING_EVENTS,
    RECONCILED, RECONCILE_FAILED.
    """
    provider = str(provider or "").strip()
    intent_id = str(intent_id or "").strip()
    if not provider or not intent_id:
        return ReconcileResult("INVALID_INPUT")

    now = now or utcnow()
    try:
        with transaction(db):
            payment = (
                db.query(Payment)
                .filter(Payment.provider == provider, Payment.provider_intent_id == intent_id)
                .with_for_update()
                .first()
            )
            if payment is None:
                return ReconcileResult("PAYMENT_NOT_FOUND")

            events = (
                db.query(PaymentWebhookEvent)
                .filter(
                    PaymentWebhookEvent.provider == provider,
                    PaymentWebhookEvent.intent_id == intent_id,
                    PaymentWebhookEvent.processed_at.is_(None),
                )
                .order_by(PaymentWebhookEvent.id.asc())
                .with_for_update()
                .all()
            )
            if not events:
                return ReconcileResult("NO_PENDING_EVENTS", payment.id, payment.status)

            order = db.query(Order).filter(Order.id == payment.order_id).with_for_update().first()
            if order is None:
                for event in events:
                    event.processed_at = now
                logger.warning("Webhook events for missing order %s", safe_log_context({"payment_id": payment.id}))
                return ReconcileResult("ORDER_NOT_FOUND", payment.id, payment.status, len(events))

            outcomes = []
            for event in events:
                outcome = _apply_event(db, event, payment, order, now)
                event.processed_at = now
                outcomes.append(outcome)
                logger.info(
                    "Webhook event applied %s",
                    safe_log_context({
                        "event_id": event.event_id,
                        "event_type": event.event_type,
                        "payment_id": payment.id,
                        "order_id": order.id,
                        "outcome": outcome,
                    }),
                )

            result = ReconcileResult("RECONCILED", payment.id, payment.status, len(events), outcomes)
    except Exception:
        logger.exception("Webhook reconciliation failed for intent %s", intent_id)
        return ReconcileResult("RECONCILE_FAILED")

    return result
