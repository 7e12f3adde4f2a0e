import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

from datetime import timezone

import pytest
from filestore import create_app
from filestore.extensions import db
from filestore.models import User, BillingRecord

FALLBACK_PRICE = "price_fallback"

@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        STRIPE_PRICE_ID=FALLBACK_PRICE,
        APP_ENV="test",
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()

@pytest.fixture()
def make_user(app):
    def _make(uuid="u1", account_type="basic", quota=5):
        with app.app_context():
            db.session.add(User(
                uuid=uuid,
                account_type=account_type,
                post_api_calls=quota,
                get_api_calls=quota,
                edit_api_calls=quota,
            ))
            db.session.commit()
        return uuid
    return _make

@pytest.fixture()
def make_record(app):
    def _make(user_id="u1", **cols):
        with app.app_context():
            db.session.add(BillingRecord(user_id=user_id, **cols))
            db.session.commit()
        return user_id
    return _make

def naive_utc(dt):
    """SQLite hands back naive datetimes, Postgres aware ones; compare in naive UTC."""
    if dt is not None and dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt

def event(ev_type, obj, ev_id="evt_test"):
    return {"id": ev_id, "type": ev_type, "data": {"object": obj}}
