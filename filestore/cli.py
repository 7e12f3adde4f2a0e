import json

import click
from flask.cli import with_appcontext

from filestore.extensions import db
from filestore.models import BillingRecord, User
from filestore.billing import BillingError, TIER_PRESETS, apply_plan, reconcile_event

@click.group()
def billing():
    """Billing reconciliation ops."""

@billing.command("apply-event")
@click.argument("path", type=click.File("r"))
@click.option("--price-id", default=None, help="Fallback price id (defaults to STRIPE_PRICE_ID)")
@with_appcontext
def billing_apply_event(path, price_id):
    """Reconcile a Stripe event saved as JSON (e.g. from the dashboard)."""
    try:
        event = json.load(path)
    except ValueError as e:
        raise click.ClickException(f"Invalid event JSON: {e}")

    try:
        result = reconcile_event(event, fallback_price_id=price_id)
    except BillingError as e:
        raise click.ClickException(str(e))

    if result is None:
        click.echo(f"Ignored event type {event.get('type')!r}")
    else:
        click.echo(f"Applied {event.get('type')} -> {result}")

@billing.command("show")
@click.argument("user_id")
@with_appcontext
def billing_show(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise click.ClickException("User not found")

    click.echo(
        f"user={user.uuid} plan={user.account_type} "
        f"quota={user.post_api_calls}/{user.get_api_calls}/{user.edit_api_calls}"
    )
    rec = db.session.query(BillingRecord).filter_by(user_id=user_id).one_or_none()
    if not rec:
        click.echo("no billing record")
        return
    click.echo(
        f"status={rec.subscription_status} customer={rec.stripe_customer_id} "
        f"subscription={rec.stripe_subscription_id} price={rec.price_id} "
        f"period={rec.current_period_start}..{rec.current_period_end} "
        f"cancel_at_period_end={rec.cancel_at_period_end} canceled_at={rec.canceled_at}"
    )

@billing.command("set-plan")
@click.argument("user_id")
@click.argument("tier", type=click.Choice(sorted(TIER_PRESETS)))
@with_appcontext
def billing_set_plan(user_id, tier):
    """Manual plan correction; Stripe state is left as is."""
    try:
        apply_plan(db.session, user_id, tier)
        db.session.commit()
    except BillingError as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(f"User {user_id} set to {tier}")

def register_cli(app):
    app.cli.add_command(billing)
