from .user import User, ACCOUNT_BASIC, ACCOUNT_PRO
from .billing_record import BillingRecord

__all__ = ["User", "BillingRecord", "ACCOUNT_BASIC", "ACCOUNT_PRO"]
