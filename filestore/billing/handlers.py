"""
Stripe event → billing state.

One handler per event kind. Each takes the SQLAlchemy session it should write
through and the Stripe event (dict or StripeObject), commits on success and
rolls back on any failure before re-raising, so a caller never observes a
half-applied event. Nothing is retried here: a raised BillingError is the
webhook layer's cue to answer non-2xx and let Stripe redeliver.
"""
import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple

import stripe
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filestore.extensions import db
from .errors import AmbiguousPayload, MalformedPayload, NoMatchingRecord, PersistenceError
from .identity import (
    customer_ref,
    invoice_subscription_ref,
    line_items,
    ref_id,
    resolve_checkout_user,
    resolve_invoice_user,
    resolve_subscription_user,
)
from .plans import PLAN_BASIC, PLAN_PRO, apply_plan
from .records import mark_canceled, update_subscription_state, upsert_billing_record

STATUS_ACTIVE = "active"
STATUS_CANCELED = "canceled"


# ----- payload parsing -----

def _as_dict(obj: Any) -> Any:
    # StripeObject → plain nested dicts (to_dict is recursive on current SDKs)
    if isinstance(obj, stripe.StripeObject):
        to_dict = getattr(obj, "to_dict_recursive", None) or obj.to_dict
        return to_dict()
    return obj


def event_object(event: Any, kind: str) -> Dict[str, Any]:
    """Return `data.object` of a Stripe event, or raise MalformedPayload."""
    event = _as_dict(event)
    if not isinstance(event, Mapping):
        raise MalformedPayload(f"failed to parse {kind}: event is not an object", operation=kind)
    data = event.get("data")
    obj = _as_dict(data.get("object")) if isinstance(data, Mapping) else None
    if not isinstance(obj, Mapping):
        raise MalformedPayload(f"failed to parse {kind}: data.object missing", operation=kind)
    return dict(obj)


def _to_dt(ts: Any, kind: str) -> Optional[datetime]:
    if not ts:
        return None
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise MalformedPayload(f"bad timestamp {ts!r}", operation=kind, cause=e) from e


def invoice_period(invoice: Mapping, kind: str = "invoice_paid") -> Tuple[Optional[datetime], Optional[datetime]]:
    """The first line item's period wins; the invoice's own period is the fallback."""
    lines = line_items(invoice)
    period = lines[0].get("period") if lines else None
    if isinstance(period, Mapping) and (period.get("start") or period.get("end")):
        return _to_dt(period.get("start"), kind), _to_dt(period.get("end"), kind)
    return _to_dt(invoice.get("period_start"), kind), _to_dt(invoice.get("period_end"), kind)


def invoice_price_id(invoice: Mapping) -> str:
    for line in line_items(invoice):
        pricing = line.get("pricing")
        price_details = pricing.get("price_details") if isinstance(pricing, Mapping) else None
        price_id = ref_id(price_details.get("price")) if isinstance(price_details, Mapping) else ""
        # older API versions expand the price on the line itself
        price_id = price_id or ref_id(line.get("price"))
        if price_id:
            return price_id
    return ""


def checkout_price_id(checkout_session: Mapping) -> str:
    # line_items is only present when the session was fetched with expand[]
    items = checkout_session.get("line_items")
    data = items.get("data") if isinstance(items, Mapping) else None
    for item in data or []:
        if isinstance(item, Mapping):
            price_id = ref_id(item.get("price"))
            if price_id:
                return price_id
    return ""


@contextmanager
def _unit_of_work(session: Session, operation: str) -> Iterator[None]:
    try:
        yield
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        current_app.logger.warning("%s rolled back: %s", operation, e)
        raise PersistenceError("commit failed", operation=operation, cause=e) from e
    except Exception as e:
        session.rollback()
        current_app.logger.warning("%s rolled back: %s", operation, e)
        raise


def _log(event: str, **fields: Any) -> None:
    current_app.logger.info(json.dumps({"event": event, **fields}, default=str))


# ----- handlers -----

def handle_checkout_session_completed(session: Session, event: Any, *, fallback_price_id: Optional[str] = None) -> str:
    """
    Create/merge the user's billing row with the Stripe customer and
    subscription ids from a finished checkout. Status is left for the
    invoice/subscription events. Requires `userID` in the session metadata.
    """
    operation = "checkout_session_completed"
    checkout = event_object(event, operation)

    with _unit_of_work(session, operation):
        user_id = resolve_checkout_user(checkout)
        customer_id = customer_ref(checkout)
        subscription_id = ref_id(checkout.get("subscription"))
        upsert_billing_record(
            session,
            user_id,
            customer_id=customer_id,
            subscription_id=subscription_id,
            price_id=checkout_price_id(checkout) or fallback_price_id or None,
        )

    _log("billing.checkout_session_completed", user_id=user_id, customer=customer_id, subscription=subscription_id)
    return user_id


def handle_invoice_paid(session: Session, event: Any, *, fallback_price_id: Optional[str] = None) -> str:
    """
    Upgrade the invoice's user to pro and mark the billing row active for the
    paid period. Safe to replay.
    """
    operation = "invoice_paid"
    invoice = event_object(event, operation)
    period_start, period_end = invoice_period(invoice, operation)

    with _unit_of_work(session, operation):
        user_id = resolve_invoice_user(session, invoice)
        customer_id = customer_ref(invoice)
        subscription_id = invoice_subscription_ref(invoice)

        apply_plan(session, user_id, PLAN_PRO)
        upsert_billing_record(
            session,
            user_id,
            customer_id=customer_id,
            subscription_id=subscription_id,
            price_id=invoice_price_id(invoice) or fallback_price_id or None,
            subscription_status=STATUS_ACTIVE,
            current_period_start=period_start,
            current_period_end=period_end,
            cancel_at_period_end=False,
        )

    _log("billing.invoice_paid", user_id=user_id, subscription=subscription_id, period_end=period_end)
    return user_id


def handle_subscription_updated(session: Session, event: Any) -> int:
    """
    Copy status and the cancel-at-period-end flag onto the records matching
    the subscription's customer or id. Returns the number of rows updated.
    """
    operation = "subscription_updated"
    sub = event_object(event, operation)

    customer_id = customer_ref(sub)
    subscription_id = ref_id(sub.get("id"))
    if not customer_id and not subscription_id:
        raise AmbiguousPayload("subscription.updated missing identifiers", operation=operation)

    status = sub.get("status")
    if not isinstance(status, str) or not status.strip():
        raise MalformedPayload("subscription.updated missing status", operation=operation)

    with _unit_of_work(session, operation):
        rows = update_subscription_state(
            session,
            customer_id=customer_id,
            subscription_id=subscription_id,
            status=status,
            cancel_at_period_end=bool(sub.get("cancel_at_period_end")),
        )
        if rows == 0:
            raise NoMatchingRecord(
                f"no billing record for customer={customer_id or '-'} subscription={subscription_id or '-'}",
                operation=operation,
            )

    _log("billing.subscription_updated", subscription=subscription_id, status=status, rows=rows)
    return rows


def handle_subscription_deleted(session: Session, event: Any) -> str:
    """
    Cancel the billing row and downgrade the user to basic. Both writes
    commit together or not at all. A user with no billing row is still
    downgraded.
    """
    operation = "subscription_deleted"
    sub = event_object(event, operation)

    with _unit_of_work(session, operation):
        user_id = resolve_subscription_user(session, sub)
        if mark_canceled(session, user_id) == 0:
            current_app.logger.warning("%s: no billing record for user %r", operation, user_id)
        apply_plan(session, user_id, PLAN_BASIC)

    _log("billing.subscription_deleted", user_id=user_id, subscription=ref_id(sub.get("id")))
    return user_id


# ----- dispatch -----

EVENT_HANDLERS: Dict[str, Callable[..., Any]] = {
    "checkout.session.completed": handle_checkout_session_completed,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_succeeded": handle_invoice_paid,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
}

# Handlers that store a price and therefore need the configured fallback
_PRICED = {handle_checkout_session_completed, handle_invoice_paid}


def reconcile_event(event: Any, *, session: Optional[Session] = None, fallback_price_id: Optional[str] = None) -> Any:
    """
    Route a Stripe event to its handler. Defaults to the Flask-SQLAlchemy
    session and STRIPE_PRICE_ID from the app config (needs an app context).
    Returns the handler's result, or None for event types we do not handle.
    """
    event = _as_dict(event)
    ev_type = event.get("type") if isinstance(event, Mapping) else None
    if not ev_type or not isinstance(ev_type, str):
        raise MalformedPayload("event type missing", operation="reconcile_event")

    handler = EVENT_HANDLERS.get(ev_type)
    if handler is None:
        _log("billing.event_ignored", type=ev_type, id=event.get("id"))
        return None

    if session is None:
        session = db.session
    if handler in _PRICED:
        if fallback_price_id is None:
            fallback_price_id = current_app.config.get("STRIPE_PRICE_ID")
        return handler(session, event, fallback_price_id=fallback_price_id)
    return handler(session, event)
