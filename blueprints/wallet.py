#======================================================================================
#
# USER WALLET, COMMISSIONS, REFERRALS AND WITHDRAWALS
#
#=======================================================================================
from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from referral import reports
from referral.errors import ValidationError
from referral.withdrawal import WithdrawalStateMachine


bp = Blueprint('wallet', __name__, url_prefix='/api')


def _int_arg(name, default=None, minimum=None, maximum=None):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be at least {minimum}")
    if maximum is not None and value > maximum:
        value = maximum
    return value


@bp.route('/wallet', methods=['GET'])
@login_required
def get_wallet():
    return jsonify(reports.wallet_projection(current_user.id)), 200


@bp.route('/commissions', methods=['GET'])
@login_required
def get_commissions():
    level = _int_arg("level", minimum=1)
    limit = _int_arg("limit", default=50, minimum=1, maximum=200)
    items = reports.commission_history(
        current_user.id, level=level, status=request.args.get("status"), limit=limit
    )
    return jsonify({"commissions": items, "count": len(items)}), 200


@bp.route('/referrals/summary', methods=['GET'])
@login_required
def get_referral_summary():
    return jsonify(reports.referral_summary(current_user.id)), 200


@bp.route('/withdrawals', methods=['GET'])
@login_required
def list_my_withdrawals():
    items = reports.withdrawal_history(current_user.id, status=request.args.get("status"))
    return jsonify({"withdrawals": items, "count": len(items)}), 200


@bp.route('/withdrawals', methods=['POST'])
@login_required
def create_withdrawal():
    data = request.get_json(silent=True)
    if not data:
        raise ValidationError("Invalid or missing JSON body")

    req = WithdrawalStateMachine.request(
        current_user.id,
        data.get("amount"),
        data.get("paymentMethod"),
        data.get("paymentDetails"),
    )
    current_app.logger.info(f"Withdrawal request {req.id} created by user {current_user.id}")
    return jsonify({"message": "Withdrawal request submitted", "withdrawal": req.to_dict()}), 201
