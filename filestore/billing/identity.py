"""
Map a Stripe payload (invoice, subscription, checkout session) to our user id.

Metadata is authoritative: checkout stamps `userID` on the session and on the
subscription, and Stripe copies it onto invoices it generates from that
subscription. Renewal invoices sometimes arrive without it, so as a last
resort we look the user up through the customer/subscription ids already on
file in the `stripe` table.
"""
from typing import Any, Callable, List, Mapping, Optional, Sequence

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import AmbiguousPayload, MalformedPayload, PersistenceError, UserNotFound

METADATA_USER_KEY = "userID"

_BY_SUBSCRIPTION_SQL = sa.text(
    "SELECT user_id FROM stripe WHERE stripe_subscription_id = :ref ORDER BY id LIMIT 1"
)
_BY_CUSTOMER_SQL = sa.text(
    "SELECT user_id FROM stripe WHERE stripe_customer_id = :ref ORDER BY id LIMIT 1"
)


# ----- payload helpers -----

def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _dig(obj: Any, *path: str) -> Any:
    cur = obj
    for key in path:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def ref_id(value: Any) -> str:
    """Stripe references arrive either as an id string or as an expanded object."""
    if isinstance(value, Mapping):
        value = value.get("id")
    return _clean(value)


def line_items(obj: Any) -> List[Mapping]:
    data = _dig(obj, "lines", "data")
    if not isinstance(data, list):
        return []
    return [line for line in data if isinstance(line, Mapping)]


def _metadata_user(metadata: Any) -> Optional[str]:
    if not isinstance(metadata, Mapping):
        return None
    return _clean(metadata.get(METADATA_USER_KEY)) or None


# ----- metadata strategies (pure, tried in order) -----

def user_from_object_metadata(obj: Any) -> Optional[str]:
    return _metadata_user(_dig(obj, "metadata"))


def user_from_subscription_details(obj: Any) -> Optional[str]:
    return _metadata_user(_dig(obj, "parent", "subscription_details", "metadata"))


def user_from_line_items(obj: Any) -> Optional[str]:
    for line in line_items(obj):
        user_id = _metadata_user(line.get("metadata"))
        if user_id:
            return user_id
    return None


MetadataStrategy = Callable[[Any], Optional[str]]

METADATA_STRATEGIES: Sequence[MetadataStrategy] = (
    user_from_object_metadata,
    user_from_subscription_details,
    user_from_line_items,
)


def user_from_metadata(obj: Any) -> Optional[str]:
    for strategy in METADATA_STRATEGIES:
        user_id = strategy(obj)
        if user_id:
            return user_id
    return None


# ----- reference extraction -----

def customer_ref(obj: Any) -> str:
    return ref_id(_dig(obj, "customer"))


def invoice_subscription_ref(invoice: Any) -> str:
    sub_id = ref_id(_dig(invoice, "parent", "subscription_details", "subscription"))
    if sub_id:
        return sub_id

    for line in line_items(invoice):
        sub_id = ref_id(line.get("subscription")) or ref_id(
            _dig(line, "parent", "subscription_item_details", "subscription")
        )
        if sub_id:
            return sub_id

    # Pre-2025 API versions put it on the invoice itself
    return ref_id(_dig(invoice, "subscription"))


# ----- store fallback -----

def lookup_user_by_refs(session: Session, *, customer_id: str = "", subscription_id: str = "") -> Optional[str]:
    """
    Find the owner of a billing record: exact subscription match first, then
    customer. Returns None when neither matches.
    """
    try:
        if subscription_id:
            user_id = session.execute(_BY_SUBSCRIPTION_SQL, {"ref": subscription_id}).scalar()
            if user_id:
                return user_id
        if customer_id:
            user_id = session.execute(_BY_CUSTOMER_SQL, {"ref": customer_id}).scalar()
            if user_id:
                return user_id
    except SQLAlchemyError as e:
        raise PersistenceError("billing record lookup failed", operation="resolve_user.lookup", cause=e) from e
    return None


# ----- resolvers -----

def _resolve(session: Session, obj: Any, *, kind: str, customer_id: str, subscription_id: str) -> str:
    if not isinstance(obj, Mapping):
        raise MalformedPayload(f"{kind} payload missing", operation=f"resolve_user.{kind}")

    user_id = user_from_metadata(obj)
    if user_id:
        return user_id

    if not customer_id and not subscription_id:
        raise AmbiguousPayload(
            f"{kind} carries no {METADATA_USER_KEY} metadata and no customer/subscription reference",
            operation=f"resolve_user.{kind}",
        )

    user_id = lookup_user_by_refs(session, customer_id=customer_id, subscription_id=subscription_id)
    if not user_id:
        raise UserNotFound(
            f"could not resolve user for {kind} (customer={customer_id or '-'}, subscription={subscription_id or '-'})",
            operation=f"resolve_user.{kind}",
        )

    current_app.logger.debug("resolved %s to user %s through stored references", kind, user_id)
    return user_id


def resolve_invoice_user(session: Session, invoice: Any) -> str:
    return _resolve(
        session,
        invoice,
        kind="invoice",
        customer_id=customer_ref(invoice),
        subscription_id=invoice_subscription_ref(invoice),
    )


def resolve_subscription_user(session: Session, subscription: Any) -> str:
    return _resolve(
        session,
        subscription,
        kind="subscription",
        customer_id=customer_ref(subscription),
        subscription_id=ref_id(_dig(subscription, "id")),
    )


def resolve_checkout_user(checkout_session: Any) -> str:
    """Checkout has no store fallback: the billing record does not exist yet."""
    if not isinstance(checkout_session, Mapping):
        raise MalformedPayload("checkout session payload missing", operation="resolve_user.checkout_session")
    user_id = user_from_object_metadata(checkout_session)
    if not user_id:
        raise UserNotFound(
            f"{METADATA_USER_KEY} not found in checkout session metadata",
            operation="resolve_user.checkout_session",
        )
    return user_id
