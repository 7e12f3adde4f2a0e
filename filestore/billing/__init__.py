from .errors import (
    AmbiguousPayload,
    BillingError,
    MalformedPayload,
    NoMatchingRecord,
    NoSuchUser,
    PersistenceError,
    UserNotFound,
)
from .handlers import (
    EVENT_HANDLERS,
    handle_checkout_session_completed,
    handle_invoice_paid,
    handle_subscription_deleted,
    handle_subscription_updated,
    reconcile_event,
)
from .plans import PLAN_BASIC, PLAN_PRO, TIER_PRESETS, apply_plan
from .records import upsert_billing_record
