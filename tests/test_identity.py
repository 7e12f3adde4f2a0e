import pytest
from filestore.extensions import db
from filestore.billing import identity
from filestore.billing.errors import AmbiguousPayload, MalformedPayload, UserNotFound

class ExplodingSession:
    """Any store access fails the test: metadata must be enough."""
    def execute(self, *args, **kwargs):
        raise AssertionError("store lookup issued")

def test_object_metadata_strategy_trims():
    assert identity.user_from_object_metadata({"metadata": {"userID": "  u1 "}}) == "u1"
    assert identity.user_from_object_metadata({"metadata": {"userID": "   "}}) is None
    assert identity.user_from_object_metadata({"metadata": None}) is None
    assert identity.user_from_object_metadata({}) is None

def test_subscription_details_strategy():
    inv = {"parent": {"subscription_details": {"metadata": {"userID": "u2"}}}}
    assert identity.user_from_subscription_details(inv) == "u2"
    assert identity.user_from_subscription_details({"parent": None}) is None

def test_line_items_strategy_first_match_in_order():
    inv = {"lines": {"data": [
        {"metadata": {}},
        {"metadata": {"userID": "u3"}},
        {"metadata": {"userID": "u4"}},
    ]}}
    assert identity.user_from_line_items(inv) == "u3"
    assert identity.user_from_line_items({"lines": {"data": "nope"}}) is None

def test_metadata_priority_primary_then_details_then_lines():
    inv = {
        "metadata": {"userID": "primary"},
        "parent": {"subscription_details": {"metadata": {"userID": "details"}}},
        "lines": {"data": [{"metadata": {"userID": "line"}}]},
    }
    assert identity.user_from_metadata(inv) == "primary"
    inv["metadata"] = {}
    assert identity.user_from_metadata(inv) == "details"
    inv["parent"] = {}
    assert identity.user_from_metadata(inv) == "line"

def test_ref_id_accepts_string_or_expanded_object():
    assert identity.ref_id(" cus_1 ") == "cus_1"
    assert identity.ref_id({"id": "cus_2", "email": "x@y"}) == "cus_2"
    assert identity.ref_id(None) == ""
    assert identity.ref_id(42) == ""

def test_invoice_subscription_ref_sources():
    assert identity.invoice_subscription_ref(
        {"parent": {"subscription_details": {"subscription": {"id": "sub_parent"}}}}
    ) == "sub_parent"
    assert identity.invoice_subscription_ref(
        {"lines": {"data": [{"subscription": "sub_line"}]}}
    ) == "sub_line"
    assert identity.invoice_subscription_ref(
        {"lines": {"data": [{}, {"parent": {"subscription_item_details": {"subscription": "sub_item"}}}]}}
    ) == "sub_item"
    assert identity.invoice_subscription_ref({"subscription": "sub_legacy"}) == "sub_legacy"
    assert identity.invoice_subscription_ref({}) == ""

def test_metadata_resolution_never_touches_store():
    inv = {"metadata": {"userID": "u1"}, "customer": "cus_1", "lines": {"data": [{"subscription": "sub_1"}]}}
    assert identity.resolve_invoice_user(ExplodingSession(), inv) == "u1"
    sub = {"id": "sub_1", "customer": "cus_1", "metadata": {"userID": "u9"}}
    assert identity.resolve_subscription_user(ExplodingSession(), sub) == "u9"

def test_no_metadata_and_no_refs_is_ambiguous_without_lookup():
    with pytest.raises(AmbiguousPayload):
        identity.resolve_invoice_user(ExplodingSession(), {"metadata": {}})
    # still a UserNotFound for callers that only care about "unresolvable"
    with pytest.raises(UserNotFound):
        identity.resolve_subscription_user(ExplodingSession(), {"customer": None})

def test_missing_payload_is_malformed():
    with pytest.raises(MalformedPayload):
        identity.resolve_invoice_user(ExplodingSession(), None)
    with pytest.raises(MalformedPayload):
        identity.resolve_checkout_user("cs_123")

def test_fallback_by_subscription_reference(app, make_user, make_record):
    make_user("u1")
    make_record("u1", stripe_customer_id="cus_a", stripe_subscription_id="sub_123")
    inv = {"customer": "cus_unknown", "parent": {"subscription_details": {"subscription": "sub_123"}}}
    with app.app_context():
        assert identity.resolve_invoice_user(db.session, inv) == "u1"

def test_subscription_match_beats_customer_match(app, make_user, make_record):
    make_user("by_sub")
    make_user("by_cus")
    make_record("by_sub", stripe_customer_id="cus_other", stripe_subscription_id="sub_x")
    make_record("by_cus", stripe_customer_id="cus_x", stripe_subscription_id="sub_other")
    with app.app_context():
        assert identity.lookup_user_by_refs(db.session, customer_id="cus_x", subscription_id="sub_x") == "by_sub"
        sub = {"id": "sub_x", "customer": "cus_x"}
        assert identity.resolve_subscription_user(db.session, sub) == "by_sub"

def test_fallback_by_customer_when_subscription_unknown(app, make_user, make_record):
    make_user("u1")
    make_record("u1", stripe_customer_id="cus_a")
    inv = {"customer": {"id": "cus_a"}, "subscription": "sub_never_seen"}
    with app.app_context():
        assert identity.resolve_invoice_user(db.session, inv) == "u1"

def test_unknown_references_raise_not_found(app):
    with app.app_context():
        with pytest.raises(UserNotFound) as exc:
            identity.resolve_invoice_user(db.session, {"customer": "cus_nobody"})
        assert not isinstance(exc.value, AmbiguousPayload)
        assert exc.value.operation == "resolve_user.invoice"

def test_checkout_resolution_uses_metadata_only():
    assert identity.resolve_checkout_user({"metadata": {"userID": "u5"}}) == "u5"
    with pytest.raises(UserNotFound):
        identity.resolve_checkout_user({"metadata": {}, "customer": "cus_1", "subscription": "sub_1"})
