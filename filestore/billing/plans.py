from typing import Dict, NamedTuple

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filestore.models import ACCOUNT_BASIC, ACCOUNT_PRO
from .errors import NoSuchUser, PersistenceError


class PlanQuota(NamedTuple):
    post_api_calls: int
    get_api_calls: int
    edit_api_calls: int


PLAN_BASIC = ACCOUNT_BASIC
PLAN_PRO = ACCOUNT_PRO

# Quotas are reset to these on every plan change
TIER_PRESETS: Dict[str, PlanQuota] = {
    PLAN_BASIC: PlanQuota(5, 5, 5),
    PLAN_PRO: PlanQuota(10, 10, 10),
}

_APPLY_PLAN_SQL = sa.text(
    """
    UPDATE users
    SET post_api_calls = :post_api_calls,
        get_api_calls  = :get_api_calls,
        edit_api_calls = :edit_api_calls,
        account_type   = :account_type
    WHERE uuid = :user_id
    """
)


def quota_for(tier: str) -> PlanQuota:
    try:
        return TIER_PRESETS[tier]
    except KeyError:
        raise ValueError(f"Unknown plan tier {tier!r}; expected one of {sorted(TIER_PRESETS)}") from None


def apply_plan(session: Session, user_id: str, tier: str) -> None:
    """
    Overwrite the user's plan label and quota counters in one UPDATE.
    Does not commit: the caller owns the transaction.
    Raises NoSuchUser when no users row matched, PersistenceError on DB failure.
    """
    quota = quota_for(tier)
    try:
        result = session.execute(
            _APPLY_PLAN_SQL,
            {
                "post_api_calls": quota.post_api_calls,
                "get_api_calls": quota.get_api_calls,
                "edit_api_calls": quota.edit_api_calls,
                "account_type": tier,
                "user_id": user_id,
            },
        )
    except SQLAlchemyError as e:
        raise PersistenceError("failed to update user plan", operation=f"apply_plan.{tier}", cause=e) from e

    if result.rowcount == 0:
        raise NoSuchUser(f"user {user_id!r} does not exist", operation=f"apply_plan.{tier}")
