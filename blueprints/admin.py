#======================================================================================
#
# ADMIN: withdrawals, commissions, level configuration and operator re-runs
#
#=======================================================================================
from decimal import Decimal
from functools import wraps
from flask import Blueprint, jsonify, request, abort, current_app
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import User
from referral import reports
from referral.audit import record_audit
from referral.commission import CommissionEngine
from referral.errors import ValidationError, NotFoundError, StorageFailure
from referral.level_config import LevelConfigStore
from referral.tree import ReferralTreeBuilder
from referral.wallet_ledger import WalletLedger
from referral.withdrawal import WithdrawalStateMachine


def admin_required(f):
    """
    Decorator to restrict access to admin-only routes.
    - 401 when nobody is logged in.
    - 403 when the logged-in user's role is not 'admin'.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)

        if current_user.role != "admin":
            abort(403)

        return f(*args, **kwargs)

    return decorated_function


admin_bp = Blueprint('admin', __name__, url_prefix='/admin')


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def _plan_id_arg(value):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("plan_id must be an integer")


#============================================================================================================
#     WITHDRAWALS
#============================================================================================================

@admin_bp.route('/withdrawals', methods=['GET'])
@admin_required
def list_withdrawals():
    items = reports.list_withdrawals(status=request.args.get("status"))
    return jsonify({"withdrawals": items, "count": len(items)}), 200


@admin_bp.route('/withdrawals/stats', methods=['GET'])
@admin_required
def withdrawal_stats():
    return jsonify(reports.withdrawal_stats()), 200


@admin_bp.route('/withdrawals/<int:request_id>/approve', methods=['POST'])
@admin_required
def approve_withdrawal(request_id):
    data = _json_body()
    req = WithdrawalStateMachine.approve(request_id, current_user.id, notes=data.get("notes"))
    return jsonify({"message": "Withdrawal approved", "withdrawal": req.to_dict()}), 200


@admin_bp.route('/withdrawals/<int:request_id>/reject', methods=['POST'])
@admin_required
def reject_withdrawal(request_id):
    data = _json_body()
    req = WithdrawalStateMachine.reject(request_id, current_user.id, data.get("notes"))
    return jsonify({"message": "Withdrawal rejected", "withdrawal": req.to_dict()}), 200


@admin_bp.route('/withdrawals/<int:request_id>/complete', methods=['POST'])
@admin_required
def complete_withdrawal(request_id):
    data = _json_body()
    req = WithdrawalStateMachine.complete(request_id, current_user.id, notes=data.get("notes"))
    return jsonify({"message": "Withdrawal completed", "withdrawal": req.to_dict()}), 200


#============================================================================================================
#     COMMISSIONS & PAYMENTS
#============================================================================================================

@admin_bp.route('/commissions', methods=['GET'])
@admin_required
def list_commissions():
    items = reports.list_commissions(status=request.args.get("status"))
    return jsonify({"commissions": items, "count": len(items)}), 200


@admin_bp.route('/commissions/<int:commission_id>/mark-paid', methods=['POST'])
@admin_required
def mark_commission_paid(commission_id):
    commission = CommissionEngine.mark_paid(commission_id, current_user.id)
    return jsonify({"message": "Commission marked as paid", "commission": commission.to_dict()}), 200


@admin_bp.route('/payments/<int:payment_id>/distribute', methods=['POST'])
@admin_required
def distribute_payment(payment_id):
    result = CommissionEngine.distribute_by_id(payment_id)
    current_app.logger.info(f"Admin {current_user.id} re-ran distribution for payment {payment_id}")
    status = 207 if result.partial else 200
    return jsonify(result.to_dict()), status


#============================================================================================================
#     REFERRAL TREE
#============================================================================================================

@admin_bp.route('/users/<int:user_id>/ancestry', methods=['POST'])
@admin_required
def build_user_ancestry(user_id):
    data = _json_body()
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)

    created = ReferralTreeBuilder.build_ancestry(user, data.get("referralCode"))
    return jsonify({
        "userId": user_id,
        "edgesCreated": created,
        "ancestors": ReferralTreeBuilder.get_ancestors(user_id),
    }), 200


#============================================================================================================
#     LEVEL CONFIGURATION
#============================================================================================================

@admin_bp.route('/level-config', methods=['GET'])
@admin_required
def get_level_config():
    plan_id = _plan_id_arg(request.args.get("plan_id"))
    return jsonify(LevelConfigStore.describe(plan_id)), 200


@admin_bp.route('/level-config', methods=['PUT'])
@admin_required
def replace_level_config():
    data = _json_body()
    plan_id = _plan_id_arg(data.get("planId"))
    instant = data.get("instant")
    monthly = data.get("monthly")
    if instant is None and monthly is None:
        raise ValidationError("Provide at least one of 'instant' or 'monthly'")
    if not isinstance(instant or [], list) or not isinstance(monthly or [], list):
        raise ValidationError("'instant' and 'monthly' must be arrays of percentages")

    LevelConfigStore.set_curve(instant=instant, monthly=monthly, plan_id=plan_id)
    current_app.logger.info(f"Admin {current_user.id} replaced level config for plan={plan_id}")
    return jsonify(LevelConfigStore.describe(plan_id)), 200


#============================================================================================================
#     WALLETS
#============================================================================================================

@admin_bp.route('/wallets/<int:user_id>/saving-credit', methods=['POST'])
@admin_required
def credit_saving(user_id):
    data = _json_body()
    amount = data.get("amount")
    if amount is None:
        raise ValidationError("amount is required")

    wallet = WalletLedger.credit(user_id, "saving", amount, commit=False)
    record_audit(
        current_user.id,
        "saving_credited",
        user_id=user_id,
        amount=Decimal(str(amount)),
        note=data.get("note"),
    )
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageFailure(f"Could not credit saving balance for user {user_id}") from exc
    return jsonify({"message": "Saving balance credited", "wallet": wallet.to_dict()}), 200
