# Overview: Service-layer operations for checkout sessions; persistence, locking and lifecycle.

"""
Checkout Session Service

Loads a session row, feeds one event through the pure reducer and writes the
result back, all inside one transaction.

CONCURRENCY:
- One active session per appointment: AppointmentCheckoutLock has the
  appointment id as primary key. A concurrent duplicate start fails the
  insert and receives the session that won.
- Mutations on one session are serialized by SELECT ... FOR UPDATE on the
  session row, with version_id as the optimistic backstop. Conflicts roll
  back and retry (run_with_retry).
- Different sessions share no lock.

EXPIRY:
- expires_at = last successful mutation + CHECKOUT_SESSION_TTL_MINUTES
- Any access to an overdue session expires it first (lazy); the CLI sweep
  (`flask checkout sweep-expired`) catches the rest. Both release the
  appointment lock.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..checkout import reducer
from ..checkout.errors import CheckoutError, CheckoutNotFoundError, CheckoutRuleError, CheckoutStateError, CheckoutValidationError
from ..checkout.line_items import build_line_item
from ..checkout.payments import parse_payment
from ..checkout.serialization import state_from_dict, state_to_dict
from ..checkout.types import ReceiptMethod, SessionState, SessionStatus, parse_enum
from ..extensions import db
from ..models import Appointment, AppointmentCheckoutLock, Branch, CheckoutSession, Customer
from ..time_utils import expiry_after, utcnow
from .benefit_service import available_discounts, customer_snapshot, resolve_discount_source
from .catalog_service import resolve_catalog_entry
from .concurrency import lock_for_update, run_with_retry
from .invoice_service import issue_invoice

NON_BILLABLE_APPOINTMENT_STATUSES = {"cancelled", "completed", "no_show"}


@dataclass(frozen=True)
class CheckoutContext:
    """Principal forwarded by the gateway for one request."""
    tenant_id: int
    branch_id: int | None = None
    user_id: int | None = None
    role: str | None = None


def _new_id() -> str:
    return str(uuid.uuid4())


def _expiry(now):
    return expiry_after(now, current_app.config.get("CHECKOUT_SESSION_TTL_MINUTES", 30))


# =============================================================================
# ROW <-> STATE
# =============================================================================

def _load_row(session_id: str, ctx: CheckoutContext, *, lock: bool) -> CheckoutSession:
    query = db.session.query(CheckoutSession).filter_by(id=session_id, tenant_id=ctx.tenant_id)
    if lock:
        query = lock_for_update(query)
    row = query.first()
    if row is None or (ctx.branch_id is not None and row.branch_id != ctx.branch_id):
        raise CheckoutNotFoundError(
            "Checkout session not found",
            code="SESSION_NOT_FOUND",
            details={"session_id": session_id},
        )
    return row


def _save(row: CheckoutSession, state: SessionState) -> None:
    row.state_json = state_to_dict(state)
    row.status = state.status.value
    row.customer_id = state.customer.id if state.customer else None
    row.grand_total = state.totals.grand_total
    row.amount_due = state.totals.amount_due
    row.expires_at = state.expires_at
    row.invoice_id = state.invoice_id
    row.completed_at = state.completed_at


def _release_appointment_lock(session_id: str) -> None:
    db.session.query(AppointmentCheckoutLock).filter_by(session_id=session_id).delete()


def _expire(row: CheckoutSession, state: SessionState, now) -> SessionState:
    expired = reducer.reduce(state, reducer.Expire(at=now))
    _save(row, expired)
    _release_appointment_lock(row.id)
    current_app.logger.info("Checkout session %s expired", row.id)
    return expired


def _is_overdue(state: SessionState, now) -> bool:
    return not state.is_terminal and state.expires_at <= now


# =============================================================================
# START / READ
# =============================================================================

def start_checkout(
    ctx: CheckoutContext,
    *,
    branch_id: int | None = None,
    appointment_id: int | None = None,
    customer_id: int | None = None,
) -> tuple[SessionState, bool]:
    """
    Open a checkout session for an appointment or a walk-in customer.

    Returns (state, created). When the appointment already has an active
    session, that session is returned with created=False.

    Raises:
        CheckoutNotFoundError: branch, appointment or customer missing
        CheckoutRuleError: appointment cancelled or already completed
    """
    branch_id = branch_id or ctx.branch_id
    if not branch_id:
        raise CheckoutValidationError("branch_id is required", details={"field": "branch_id"})
    if ctx.branch_id is not None and int(branch_id) != ctx.branch_id:
        raise CheckoutNotFoundError("Branch not found", code="BRANCH_NOT_FOUND", details={"branch_id": branch_id})

    def _op():
        now = utcnow()
        branch = Branch.query.filter_by(id=branch_id, tenant_id=ctx.tenant_id).first()
        if not branch or not branch.is_active:
            raise CheckoutNotFoundError("Branch not found", code="BRANCH_NOT_FOUND", details={"branch_id": branch_id})

        appointment = None
        resolved_customer_id = customer_id
        if appointment_id is not None:
            appointment = Appointment.query.filter_by(id=appointment_id, tenant_id=ctx.tenant_id).first()
            if not appointment or appointment.branch_id != branch.id:
                raise CheckoutNotFoundError(
                    "Appointment not found",
                    code="APPOINTMENT_NOT_FOUND",
                    details={"appointment_id": appointment_id},
                )
            if appointment.status in NON_BILLABLE_APPOINTMENT_STATUSES:
                raise CheckoutRuleError(
                    f"Cannot check out a {appointment.status} appointment",
                    code="APPOINTMENT_NOT_BILLABLE",
                    details={"appointment_id": appointment.id, "status": appointment.status},
                )
            if customer_id is not None and appointment.customer_id not in (None, customer_id):
                raise CheckoutValidationError(
                    "customer_id does not match the appointment",
                    details={"field": "customer_id"},
                )
            resolved_customer_id = customer_id or appointment.customer_id

            existing = _active_session_for_appointment(appointment.id, ctx, now)
            if existing is not None:
                return existing, False

        customer = None
        if resolved_customer_id is not None:
            customer = Customer.query.filter_by(id=resolved_customer_id, tenant_id=ctx.tenant_id).first()
            if not customer or not customer.is_active:
                raise CheckoutNotFoundError(
                    "Customer not found",
                    code="CUSTOMER_NOT_FOUND",
                    details={"customer_id": resolved_customer_id},
                )

        state = SessionState(
            id=_new_id(),
            tenant_id=ctx.tenant_id,
            branch_id=branch.id,
            created_at=now,
            expires_at=_expiry(now),
            appointment_id=appointment.id if appointment else None,
            customer=customer_snapshot(customer) if customer else None,
            is_igst=_is_inter_state(branch, customer),
        )
        state = reducer.recompute(state)

        if appointment is not None:
            for booked in appointment.services:
                entry = resolve_catalog_entry(
                    tenant_id=ctx.tenant_id,
                    branch_id=branch.id,
                    item_type="service",
                    reference_id=booked.catalog_item_id,
                    variant_id=booked.variant_id,
                )
                item = build_line_item(_new_id(), entry, booked.quantity or 1, stylist_id=booked.stylist_id)
                state = reducer.reduce(state, reducer.AddItem(item=item))

        row = CheckoutSession(
            id=state.id,
            tenant_id=ctx.tenant_id,
            branch_id=branch.id,
            appointment_id=state.appointment_id,
            created_by_user_id=ctx.user_id,
            created_at=now,
            state_json={},
            expires_at=state.expires_at,
        )
        _save(row, state)
        db.session.add(row)
        if appointment is not None:
            db.session.flush()
            db.session.add(AppointmentCheckoutLock(appointment_id=appointment.id, session_id=row.id, acquired_at=now))

        try:
            db.session.commit()
        except IntegrityError:
            # Lost the race for this appointment: hand back the winner
            db.session.rollback()
            if appointment_id is None:
                raise
            existing = _active_session_for_appointment(appointment_id, ctx, utcnow())
            if existing is None:
                raise
            return existing, False

        current_app.logger.info(
            "Checkout session %s started (branch=%s appointment=%s customer=%s)",
            state.id, branch.id, state.appointment_id, state.customer.id if state.customer else None,
        )
        return state, True

    try:
        return run_with_retry(_op)
    except CheckoutError:
        db.session.rollback()
        raise


def _active_session_for_appointment(appointment_id: int, ctx: CheckoutContext, now) -> SessionState | None:
    """Existing active session for an appointment, expiring it if overdue."""
    lock = db.session.get(AppointmentCheckoutLock, appointment_id)
    if lock is None:
        return None
    row = lock_for_update(db.session.query(CheckoutSession).filter_by(id=lock.session_id)).first()
    if row is None:
        return None
    state = state_from_dict(row.state_json)
    if state.is_terminal:
        _release_appointment_lock(row.id)
        db.session.flush()
        return None
    if _is_overdue(state, now):
        _expire(row, state, now)
        db.session.flush()
        return None
    return state


def _is_inter_state(branch: Branch, customer: Customer | None) -> bool:
    if customer is None or not customer.state_code or not branch.state_code:
        return False
    return customer.state_code.strip().upper() != branch.state_code.strip().upper()


def get_session(session_id: str, ctx: CheckoutContext) -> SessionState:
    """Read a session, expiring it first if its TTL has elapsed."""
    def _op():
        row = _load_row(session_id, ctx, lock=False)
        state = state_from_dict(row.state_json)
        now = utcnow()
        if _is_overdue(state, now):
            row = _load_row(session_id, ctx, lock=True)
            state = _expire(row, state_from_dict(row.state_json), now)
            db.session.commit()
        return state

    return run_with_retry(_op)


def get_available_discounts(session_id: str, ctx: CheckoutContext) -> dict:
    state = get_session(session_id, ctx)
    return available_discounts(state, now=utcnow())


# =============================================================================
# MUTATIONS
# =============================================================================

def _mutate(session_id: str, ctx: CheckoutContext, build_event) -> SessionState:
    """
    Apply one event to a session in its own transaction.

    build_event(state) runs under the row lock, so any lookups it does
    (catalog prices, discount sources) see the same session the reducer sees.
    """
    def _op():
        now = utcnow()
        row = _load_row(session_id, ctx, lock=True)
        state = state_from_dict(row.state_json)

        if _is_overdue(state, now):
            _expire(row, state, now)
            db.session.commit()
            raise CheckoutStateError(
                "Checkout session has expired",
                code="SESSION_EXPIRED",
                details={"session_id": session_id},
            )

        new_state = reducer.reduce(state, build_event(state, now))
        new_state = replace(new_state, expires_at=_expiry(now))
        _save(row, new_state)
        db.session.commit()
        return new_state

    try:
        return run_with_retry(_op)
    except CheckoutError:
        db.session.rollback()
        raise


def add_item(session_id: str, ctx: CheckoutContext, payload: dict) -> SessionState:
    def _event(state, now):
        entry = resolve_catalog_entry(
            tenant_id=state.tenant_id,
            branch_id=state.branch_id,
            item_type=payload.get("item_type"),
            reference_id=payload.get("reference_id"),
            variant_id=payload.get("variant_id"),
        )
        item = build_line_item(
            _new_id(),
            entry,
            payload.get("quantity", 1),
            stylist_id=payload.get("stylist_id"),
            assistant_id=payload.get("assistant_id"),
        )
        return reducer.AddItem(item=item)

    return _mutate(session_id, ctx, _event)


def update_item(session_id: str, ctx: CheckoutContext, item_id: str, changes: dict) -> SessionState:
    return _mutate(session_id, ctx, lambda state, now: reducer.UpdateItem(item_id=item_id, changes=dict(changes)))


def remove_item(session_id: str, ctx: CheckoutContext, item_id: str) -> SessionState:
    return _mutate(session_id, ctx, lambda state, now: reducer.RemoveItem(item_id=item_id))


def apply_discount(session_id: str, ctx: CheckoutContext, payload: dict) -> SessionState:
    def _event(state, now):
        source = resolve_discount_source(
            state.tenant_id,
            payload.get("discount_type"),
            payload.get("discount_source"),
        )
        return reducer.ApplyDiscount(discount_id=_new_id(), request=dict(payload), source=source, now=now)

    return _mutate(session_id, ctx, _event)


def remove_discount(session_id: str, ctx: CheckoutContext, discount_id: str) -> SessionState:
    return _mutate(session_id, ctx, lambda state, now: reducer.RemoveDiscount(discount_id=discount_id))


def add_payments(session_id: str, ctx: CheckoutContext, payments) -> SessionState:
    """Record a batch of split payments; all or none are recorded."""
    if not isinstance(payments, list) or not payments:
        raise CheckoutValidationError("payments must be a non-empty list", details={"field": "payments"})
    entries = tuple(parse_payment(_new_id(), raw) for raw in payments)
    return _mutate(session_id, ctx, lambda state, now: reducer.AddPayments(payments=entries))


def remove_payment(session_id: str, ctx: CheckoutContext, payment_id: str) -> SessionState:
    return _mutate(session_id, ctx, lambda state, now: reducer.RemovePayment(payment_id=payment_id))


def set_tip(session_id: str, ctx: CheckoutContext, amount) -> SessionState:
    return _mutate(session_id, ctx, lambda state, now: reducer.SetTip(amount=amount))


def redeem_loyalty(session_id: str, ctx: CheckoutContext, points) -> SessionState:
    return _mutate(session_id, ctx, lambda state, now: reducer.RedeemLoyalty(points=points))


def use_wallet(session_id: str, ctx: CheckoutContext, amount) -> SessionState:
    return _mutate(session_id, ctx, lambda state, now: reducer.UseWallet(amount=amount))


def set_tax_mode(session_id: str, ctx: CheckoutContext, is_igst) -> SessionState:
    return _mutate(session_id, ctx, lambda state, now: reducer.SetTaxMode(is_igst=is_igst))


# =============================================================================
# COMPLETION
# =============================================================================

def complete_checkout(
    session_id: str,
    ctx: CheckoutContext,
    *,
    send_receipt: bool = False,
    receipt_method=None,
    tip_amount=None,
) -> tuple[SessionState, int]:
    """
    Finalize a settled session into an invoice.

    IDEMPOTENT: completing an already completed session returns the same
    invoice id and changes nothing.

    Raises:
        CheckoutStateError: session expired, or not settled yet
        CheckoutRuleError: a balance or benefit was used up since it was applied
    """
    if receipt_method is not None:
        receipt_method = parse_enum(ReceiptMethod, receipt_method, "receipt_method")
    if send_receipt and receipt_method is None:
        raise CheckoutValidationError(
            "receipt_method is required when send_receipt is true",
            details={"field": "receipt_method"},
        )

    def _op():
        now = utcnow()
        row = _load_row(session_id, ctx, lock=True)
        state = state_from_dict(row.state_json)

        if state.status == SessionStatus.COMPLETED:
            return state, state.invoice_id

        if _is_overdue(state, now):
            _expire(row, state, now)
            db.session.commit()
            raise CheckoutStateError(
                "Checkout session has expired",
                code="SESSION_EXPIRED",
                details={"session_id": session_id},
            )

        if tip_amount is not None:
            state = reducer.reduce(state, reducer.SetTip(amount=tip_amount))

        final = reducer.reduce(state, reducer.Complete(invoice_id=None, at=now))
        invoice = issue_invoice(
            final,
            user_id=ctx.user_id,
            issued_at=now,
            send_receipt=bool(send_receipt),
            receipt_method=receipt_method.value if receipt_method else None,
        )
        final = replace(final, invoice_id=invoice.id)
        _save(row, final)
        _release_appointment_lock(row.id)
        db.session.commit()

        current_app.logger.info(
            "Checkout session %s completed as invoice %s (grand_total=%s)",
            row.id, invoice.invoice_number, final.totals.grand_total,
        )
        return final, invoice.id

    try:
        return run_with_retry(_op)
    except CheckoutError:
        db.session.rollback()
        raise


# =============================================================================
# EXPIRY SWEEP
# =============================================================================

def sweep_expired_sessions(now=None) -> int:
    """Expire every open/settled session past its TTL. Returns how many were expired."""
    now = now or utcnow()
    candidate_ids = [
        row_id
        for (row_id,) in db.session.query(CheckoutSession.id)
        .filter(
            CheckoutSession.status.in_([SessionStatus.OPEN.value, SessionStatus.SETTLED.value]),
            CheckoutSession.expires_at <= now,
        )
        .all()
    ]

    expired = 0
    for session_id in candidate_ids:
        def _op(session_id=session_id):
            row = lock_for_update(db.session.query(CheckoutSession).filter_by(id=session_id)).first()
            if row is None:
                return False
            state = state_from_dict(row.state_json)
            # Touched since the candidate query ran
            if not _is_overdue(state, now):
                db.session.rollback()
                return False
            _expire(row, state, now)
            db.session.commit()
            return True

        if run_with_retry(_op):
            expired += 1

    if expired:
        current_app.logger.info("Expired %s checkout session(s)", expired)
    return expired
