# referral/tree.py
import secrets
import string
from typing import List, Dict, Optional
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import User, ReferralEdge
from referral.errors import NotFoundError, StorageFailure
from referral.wallet_ledger import WalletLedger


class ReferralTreeBuilder:
    """
    Bounded-depth referral network using a closure table.
    Table: referral_edges(descendant_id, ancestor_id, level), level 1 = direct referrer.
    Edges are written once at registration and never updated.
    """

    @staticmethod
    def max_depth() -> int:
        return int(current_app.config.get("REFERRAL_MAX_DEPTH", 10))

    # -------------------------
    # Reads
    # -------------------------
    @staticmethod
    def has_edges(user_id: int) -> bool:
        return db.session.query(
            ReferralEdge.query.filter_by(descendant_id=user_id).exists()
        ).scalar()

    @staticmethod
    def is_descendant(ancestor_id: int, descendant_id: int) -> bool:
        """True if ancestor_id appears anywhere in descendant_id's ancestor chain."""
        return db.session.query(
            ReferralEdge.query.filter_by(ancestor_id=ancestor_id, descendant_id=descendant_id).exists()
        ).scalar()

    @staticmethod
    def get_ancestor_edges(user_id: int, max_levels: Optional[int] = None) -> List[ReferralEdge]:
        if max_levels is None:
            max_levels = ReferralTreeBuilder.max_depth()
        if max_levels < 1:
            return []
        return (
            ReferralEdge.query
            .filter(ReferralEdge.descendant_id == user_id, ReferralEdge.level <= max_levels)
            .order_by(ReferralEdge.level)
            .all()
        )

    @staticmethod
    def get_ancestors(user_id: int) -> List[Dict]:
        """Ancestor chain, closest referrer first."""
        rows = (
            db.session.query(ReferralEdge.level, User.id, User.full_name, User.referral_code)
            .join(User, User.id == ReferralEdge.ancestor_id)
            .filter(
                ReferralEdge.descendant_id == user_id,
                ReferralEdge.level <= ReferralTreeBuilder.max_depth(),
            )
            .order_by(ReferralEdge.level)
            .all()
        )
        return [
            {"level": level, "userId": uid, "fullName": name, "referralCode": code}
            for level, uid, name, code in rows
        ]

    @staticmethod
    def get_descendants(user_id: int, level: Optional[int] = None) -> List[Dict]:
        """Downline of a user, optionally a single level of it."""
        query = (
            db.session.query(ReferralEdge.level, User.id, User.full_name, User.phone, User.created_at)
            .join(User, User.id == ReferralEdge.descendant_id)
            .filter(ReferralEdge.ancestor_id == user_id)
        )
        if level is not None:
            query = query.filter(ReferralEdge.level == level)
        rows = query.order_by(ReferralEdge.level, User.id).all()
        return [
            {
                "level": lvl,
                "userId": uid,
                "fullName": name,
                "phone": phone,
                "joinedAt": created.isoformat() if created else None,
            }
            for lvl, uid, name, phone, created in rows
        ]

    # -------------------------
    # Writes
    # -------------------------
    @staticmethod
    def generate_referral_code(length: Optional[int] = None) -> str:
        length = length or current_app.config.get("REFERRAL_CODE_LENGTH", 8)
        chars = string.ascii_uppercase + string.digits
        for _ in range(10):
            code = ''.join(secrets.choice(chars) for _ in range(length))
            if not User.query.filter_by(referral_code=code).first():
                return code
        raise StorageFailure("Could not generate a unique referral code")

    @staticmethod
    def _resolve_referrer(user: User, referrer_code: Optional[str]) -> Optional[User]:
        # referred_by is the chain root and wins over whatever code is supplied now
        if user.referred_by:
            return db.session.get(User, user.referred_by)
        code = (referrer_code or "").strip().upper()
        if not code:
            return None
        return User.query.filter_by(referral_code=code).first()

    @staticmethod
    def build_ancestry(new_user: User, referrer_code: Optional[str] = None) -> int:
        """
        Materialize new_user's ancestor edges. Returns the number of edges created.

        Missing or unknown codes, self-referral and cycles create nothing and
        are not errors. Re-running for a user that already has edges is a
        no-op that returns 0. Storage failures roll back and raise
        StorageFailure so the build can be retried.
        """
        if isinstance(new_user, int):
            user_id = new_user
            new_user = db.session.get(User, user_id)
            if new_user is None:
                raise NotFoundError(f"User {user_id} not found", user_id=user_id)

        max_depth = ReferralTreeBuilder.max_depth()
        try:
            if ReferralTreeBuilder.has_edges(new_user.id):
                current_app.logger.info(f"Ancestry already built for user {new_user.id}")
                return 0

            referrer = ReferralTreeBuilder._resolve_referrer(new_user, referrer_code)
            if referrer is None:
                if referrer_code:
                    current_app.logger.warning(
                        f"Referral code {referrer_code!r} did not resolve for user {new_user.id}"
                    )
                return 0

            if referrer.id == new_user.id:
                current_app.logger.warning(f"User {new_user.id} attempted self-referral.")
                return 0

            if ReferralTreeBuilder.is_descendant(new_user.id, referrer.id):
                current_app.logger.warning(
                    f"Cycle detected: referrer_id={referrer.id} is descendant of new_user_id={new_user.id}"
                )
                return 0

            inherited = [
                (edge.ancestor_id, edge.level)
                for edge in ReferralTreeBuilder.get_ancestor_edges(referrer.id, max_depth - 1)
            ]

            if new_user.referred_by is None:
                new_user.referred_by = referrer.id

            edges = [ReferralEdge(descendant_id=new_user.id, ancestor_id=referrer.id, level=1)]
            edges.extend(
                ReferralEdge(descendant_id=new_user.id, ancestor_id=ancestor_id, level=level + 1)
                for ancestor_id, level in inherited
            )
            db.session.add_all(edges)
            db.session.commit()

        except IntegrityError:
            # Another build for the same user won the race
            db.session.rollback()
            current_app.logger.info(f"Concurrent ancestry build detected for user {new_user.id}")
            return 0
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(f"Ancestry build failed for user {new_user.id}: {exc}")
            raise StorageFailure(f"Could not build ancestry for user {new_user.id}") from exc

        current_app.logger.info(
            f"Ancestry built for user {new_user.id}: referrer={referrer.id}, {len(edges)} levels"
        )
        return len(edges)

    @staticmethod
    def on_registration(user: User, referrer_code: Optional[str] = None) -> int:
        """
        Registration hook. Assigns the user's own referral code, opens the
        wallet and builds ancestry. A storage failure while building is
        logged and left for an out-of-band retry so registration still succeeds.
        """
        if not user.referral_code:
            user.referral_code = ReferralTreeBuilder.generate_referral_code()
            try:
                db.session.commit()
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise StorageFailure(f"Could not assign referral code to user {user.id}") from exc

        WalletLedger.open_wallet(user.id)

        try:
            return ReferralTreeBuilder.build_ancestry(user, referrer_code)
        except StorageFailure as exc:
            current_app.logger.error(
                f"Ancestry build deferred for user {user.id} (code={referrer_code!r}): {exc}"
            )
            return 0
