# referral/reports.py
"""Read-only projections for the user wallet screens and the admin views."""
from decimal import Decimal
from typing import Any, Dict, List, Optional
from flask import current_app

from extensions import db
from models import Commission, CommissionStatus, ReferralEdge, User, WithdrawalRequest, WithdrawalStatus
from referral.errors import NotFoundError, ValidationError
from referral.wallet_ledger import WalletLedger


def _check_user(user_id: int):
    if db.session.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)


def wallet_projection(user_id: int) -> Dict[str, Any]:
    _check_user(user_id)
    wallet = WalletLedger.get_wallet(user_id)
    if wallet is None:
        zero = "0.00"
        return {
            "userId": user_id,
            "referralBalance": zero,
            "savingBalance": zero,
            "totalBalance": zero,
            "totalEarnings": zero,
            "totalWithdrawn": zero,
            "currency": current_app.config.get("CURRENCY", "INR"),
        }
    return wallet.to_dict()


def commission_history(user_id: int, level: Optional[int] = None, status: Optional[str] = None,
                       limit: int = 50) -> List[Dict[str, Any]]:
    query = Commission.query.filter(Commission.recipient_id == user_id)
    if level is not None:
        query = query.filter(Commission.level == level)
    if status:
        query = query.filter(Commission.status == _commission_status(status))
    rows = query.order_by(Commission.created_at.desc(), Commission.id.desc()).limit(limit).all()
    return [row.to_dict() for row in rows]


def referral_summary(user_id: int) -> Dict[str, Any]:
    """Downline size and commission earned per level, as on the referrals tab."""
    _check_user(user_id)
    max_depth = int(current_app.config.get("REFERRAL_MAX_DEPTH", 10))

    counts = dict(
        db.session.query(ReferralEdge.level, db.func.count(ReferralEdge.id))
        .filter(ReferralEdge.ancestor_id == user_id)
        .group_by(ReferralEdge.level)
        .all()
    )
    earnings = dict(
        db.session.query(Commission.level, db.func.coalesce(db.func.sum(Commission.amount), 0))
        .filter(Commission.recipient_id == user_id)
        .group_by(Commission.level)
        .all()
    )

    levels = []
    total_members = 0
    total_earned = Decimal("0.00")
    for level in range(1, max_depth + 1):
        members = int(counts.get(level, 0))
        earned = Decimal(str(earnings.get(level, 0))).quantize(Decimal("0.01"))
        levels.append({"level": level, "members": members, "earned": str(earned)})
        total_members += members
        total_earned += earned

    return {
        "userId": user_id,
        "levels": levels,
        "totalMembers": total_members,
        "totalEarned": str(total_earned),
    }


def withdrawal_history(user_id: int, status: Optional[str] = None) -> List[Dict[str, Any]]:
    query = WithdrawalRequest.query.filter(WithdrawalRequest.user_id == user_id)
    if status:
        query = query.filter(WithdrawalRequest.status == _withdrawal_status(status))
    return [row.to_dict() for row in query.order_by(WithdrawalRequest.id.desc()).all()]


def withdrawal_stats() -> Dict[str, int]:
    counts = dict(
        db.session.query(WithdrawalRequest.status, db.func.count(WithdrawalRequest.id))
        .group_by(WithdrawalRequest.status)
        .all()
    )
    stats = {state.value: int(counts.get(state.value, 0)) for state in WithdrawalStatus}
    stats["total"] = sum(stats.values())
    return stats


def list_withdrawals(status: Optional[str] = None) -> List[Dict[str, Any]]:
    query = db.session.query(WithdrawalRequest, User.full_name, User.phone).join(
        User, User.id == WithdrawalRequest.user_id
    )
    if status:
        query = query.filter(WithdrawalRequest.status == _withdrawal_status(status))
    rows = query.order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc()).all()

    result = []
    for req, full_name, phone in rows:
        item = req.to_dict()
        item["user"] = {"fullName": full_name, "phone": phone}
        result.append(item)
    return result


def list_commissions(status: Optional[str] = None, limit: int = 200) -> List[Dict[str, Any]]:
    query = Commission.query
    if status:
        query = query.filter(Commission.status == _commission_status(status))
    rows = query.order_by(Commission.created_at.desc(), Commission.id.desc()).limit(limit).all()
    return [row.to_dict() for row in rows]


def _withdrawal_status(status: str) -> str:
    try:
        return WithdrawalStatus(status).value
    except ValueError:
        raise ValidationError(f"Unknown withdrawal status: {status!r}")


def _commission_status(status: str) -> str:
    try:
        return CommissionStatus(status).value
    except ValueError:
        raise ValidationError(f"Unknown commission status: {status!r}")
