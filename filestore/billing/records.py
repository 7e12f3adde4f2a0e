from __future__ import annotations

from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import PersistenceError

# Stripe ids survive events that do not carry them
_REF_COLUMNS = ("stripe_customer_id", "stripe_subscription_id")

# Replaced outright whenever an event supplies them
_MERGE_COLUMNS: Dict[str, sa.types.TypeEngine] = {
    "price_id": sa.String(),
    "subscription_status": sa.String(),
    "current_period_start": sa.DateTime(timezone=True),
    "current_period_end": sa.DateTime(timezone=True),
    "cancel_at_period_end": sa.Boolean(),
}

_UPDATE_SUBSCRIPTION_STATE_SQL = sa.text(
    """
    UPDATE stripe
    SET subscription_status  = :status,
        cancel_at_period_end = :cancel_at_period_end,
        canceled_at          = CASE WHEN :cancel_at_period_end THEN CURRENT_TIMESTAMP ELSE NULL END,
        updated_at           = CURRENT_TIMESTAMP
    WHERE stripe_customer_id = :customer_id OR stripe_subscription_id = :subscription_id
    """
).bindparams(sa.bindparam("cancel_at_period_end", type_=sa.Boolean()))

_MARK_CANCELED_SQL = sa.text(
    """
    UPDATE stripe
    SET subscription_status  = 'canceled',
        cancel_at_period_end = false,
        canceled_at          = CURRENT_TIMESTAMP,
        updated_at           = CURRENT_TIMESTAMP
    WHERE user_id = :user_id
    """
)


def _upsert_sql(fields) -> sa.TextClause:
    columns = ["user_id", *_REF_COLUMNS, *fields]
    assignments = [f"{c} = COALESCE(EXCLUDED.{c}, stripe.{c})" for c in _REF_COLUMNS]
    assignments += [f"{c} = EXCLUDED.{c}" for c in fields]
    assignments.append("updated_at = CURRENT_TIMESTAMP")

    sql = (
        f"INSERT INTO stripe ({', '.join(columns)})\n"
        f"VALUES ({', '.join(':' + c for c in columns)})\n"
        "ON CONFLICT (user_id) DO UPDATE SET\n    "
        + ",\n    ".join(assignments)
    )
    return sa.text(sql).bindparams(*(sa.bindparam(c, type_=_MERGE_COLUMNS[c]) for c in fields))


def upsert_billing_record(
    session: Session,
    user_id: str,
    *,
    customer_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    **fields: Any,
) -> None:
    """
    Create the user's billing row or merge into it, in one statement.

    Blank customer/subscription ids never overwrite stored ones. Every other
    keyword passed (price_id, subscription_status, current_period_start,
    current_period_end, cancel_at_period_end) replaces the stored value, even
    when it is None; columns not passed are left untouched. updated_at is
    always refreshed. Does not commit.
    """
    unknown = sorted(set(fields) - set(_MERGE_COLUMNS))
    if unknown:
        raise TypeError(f"unsupported billing record fields: {', '.join(unknown)}")

    # dict order fixes the column order so identical field sets render identical SQL
    ordered = {c: fields[c] for c in _MERGE_COLUMNS if c in fields}
    params = {
        "user_id": user_id,
        "stripe_customer_id": (customer_id or "").strip() or None,
        "stripe_subscription_id": (subscription_id or "").strip() or None,
        **ordered,
    }
    try:
        session.execute(_upsert_sql(ordered), params)
    except SQLAlchemyError as e:
        raise PersistenceError("failed to upsert stripe record", operation="upsert_billing_record", cause=e) from e


def update_subscription_state(
    session: Session,
    *,
    customer_id: str,
    subscription_id: str,
    status: str,
    cancel_at_period_end: bool,
) -> int:
    """
    Mirror a subscription's status onto every record matching either id.
    canceled_at is stamped while cancellation is pending and cleared otherwise.
    Returns the number of rows matched. Does not commit.
    """
    try:
        result = session.execute(
            _UPDATE_SUBSCRIPTION_STATE_SQL,
            {
                "status": status,
                "cancel_at_period_end": bool(cancel_at_period_end),
                "customer_id": customer_id or None,
                "subscription_id": subscription_id or None,
            },
        )
    except SQLAlchemyError as e:
        raise PersistenceError("failed to update stripe record", operation="update_subscription_state", cause=e) from e
    return result.rowcount


def mark_canceled(session: Session, user_id: str) -> int:
    try:
        result = session.execute(_MARK_CANCELED_SQL, {"user_id": user_id})
    except SQLAlchemyError as e:
        raise PersistenceError("failed to update stripe record", operation="mark_canceled", cause=e) from e
    return result.rowcount
