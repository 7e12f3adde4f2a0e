import pytest
from sqlalchemy.exc import IntegrityError
from filestore.extensions import db
from filestore.models import User, BillingRecord

def test_billing_record_one_per_user(app):
    with app.app_context():
        db.session.add(User(uuid="u1"))
        db.session.commit()

        db.session.add(BillingRecord(user_id="u1", stripe_customer_id="cus_1"))
        db.session.commit()

        db.session.add(BillingRecord(user_id="u1", stripe_customer_id="cus_2"))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

def test_billing_record_defaults(app):
    with app.app_context():
        db.session.add(User(uuid="u1"))
        db.session.add(BillingRecord(user_id="u1"))
        db.session.commit()

        rec = db.session.query(BillingRecord).filter_by(user_id="u1").one()
        assert rec.cancel_at_period_end is False
        assert rec.subscription_status is None
        assert rec.canceled_at is None
        assert rec.created_at is not None and rec.updated_at is not None

def test_user_defaults_to_basic_quota(app):
    with app.app_context():
        db.session.add(User(uuid="u1"))
        db.session.commit()
        u = db.session.get(User, "u1")
        assert u.account_type == "basic"
        assert (u.post_api_calls, u.get_api_calls, u.edit_api_calls) == (5, 5, 5)

def test_user_account_type_is_constrained(app):
    with app.app_context():
        db.session.add(User(uuid="u1", account_type="enterprise"))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()
