# cli.py: operator commands, run as `flask ledger <command>`
import json
import click
from flask.cli import AppGroup
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import User
from referral.commission import CommissionEngine
from referral.errors import LedgerError
from referral.level_config import LevelConfigStore
from referral.tree import ReferralTreeBuilder
from referral.wallet_ledger import WalletLedger


ledger_cli = AppGroup("ledger", help="Referral ledger maintenance commands.")


def _fail(exc: LedgerError):
    raise click.ClickException(f"{exc.code}: {exc.message}")


@ledger_cli.command("build-ancestry")
@click.argument("user_id", type=int)
@click.option("--code", "referrer_code", default=None, help="Referral code to use if referred_by is unset.")
def build_ancestry_command(user_id, referrer_code):
    """Build (or retry) the ancestor edges for USER_ID."""
    user = db.session.get(User, user_id)
    if user is None:
        raise click.ClickException(f"User {user_id} not found")
    try:
        created = ReferralTreeBuilder.build_ancestry(user, referrer_code)
    except LedgerError as exc:
        _fail(exc)
    click.echo(f"User {user_id}: {created} edge(s) created")
    for ancestor in ReferralTreeBuilder.get_ancestors(user_id):
        click.echo(f"  L{ancestor['level']}: user {ancestor['userId']} ({ancestor['fullName']})")


@ledger_cli.command("distribute")
@click.argument("payment_id", type=int)
def distribute_command(payment_id):
    """Re-run commission distribution for PAYMENT_ID. Already-credited recipients are skipped."""
    try:
        result = CommissionEngine.distribute_by_id(payment_id)
    except LedgerError as exc:
        _fail(exc)
    click.echo(json.dumps(result.to_dict(), indent=2))
    if result.partial:
        raise click.ClickException(f"{len(result.failed_levels)} level(s) failed; re-run to retry them")


@ledger_cli.command("make-admin")
@click.argument("phone")
@click.option("--name", default=None, help="Full name, used when the user has to be created.")
@click.option("--password", default=None, help="Password, used when the user has to be created.")
def make_admin_command(phone, name, password):
    """Promote the user with PHONE to administrator, creating them if needed."""
    user = User.query.filter_by(phone=phone).first()
    if user is None:
        if not name:
            raise click.ClickException(f"No user with phone {phone}; pass --name to create one")
        user = User(full_name=name, phone=phone, role="admin")
        if password:
            user.set_password(password)
        db.session.add(user)
        click.echo(f"Creating admin user with phone {phone}")
    else:
        user.role = "admin"

    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise click.ClickException(f"Could not save admin user: {exc.orig}")

    if not user.referral_code:
        user.referral_code = ReferralTreeBuilder.generate_referral_code()
        db.session.commit()
    WalletLedger.open_wallet(user.id)
    click.echo(f"User (id={user.id}, phone={phone}) is now admin.")


@ledger_cli.command("level-config")
@click.option("--plan-id", type=int, default=None, help="Show the curve a plan resolves to.")
def level_config_command(plan_id):
    """Print the commission curve in effect."""
    try:
        summary = LevelConfigStore.describe(plan_id)
    except LedgerError as exc:
        _fail(exc)
    click.echo(f"Source: {summary['source']} (plan={plan_id}, max depth {summary['maxDepth']})")
    for row in summary["levels"]:
        click.echo(f"  L{row['level']:>2}  instant {row['instantPercentage']:>8}%  monthly {row['monthlyPercentage']:>8}%")
    click.echo(
        f"Total: instant {summary['totalInstantPercentage']}%, monthly {summary['totalMonthlyPercentage']}%"
    )
