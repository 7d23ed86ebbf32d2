import secrets
from datetime import datetime
from typing import Dict

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..db.session import get_session, use_session
from ..errors import Conflict, InvalidInput, NotFound
from ..models.referral import REFERRAL_COMPLETED, REFERRAL_PENDING, REFERRAL_REWARDED, Referral
from ..models.user import User
from .logging import log_event


REFERRAL_THRESHOLD = 3
DISCOUNT_PERCENT = 15


class ReferralService:
    """Referral codes, completion tracking and the threshold reward.

    A referrer earns one ``discount_percent`` reward per ``threshold``
    completed referrals. Consuming a reward moves exactly ``threshold``
    COMPLETED rows to REWARDED with a conditional update, so the same batch
    can never pay out twice.
    """

    def __init__(
        self,
        session_factory=get_session,
        clock=datetime.utcnow,
        threshold: int = REFERRAL_THRESHOLD,
        discount_percent: int = DISCOUNT_PERCENT,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self.threshold = threshold
        self.discount_percent = discount_percent

    def generate_referral_code(self, user_id: str) -> str:
        with self._session_factory() as s:
            user = s.get(User, user_id)
            if user is None:
                raise NotFound("User not found")
            if user.referral_code:
                return user.referral_code
            while True:
                code = secrets.token_hex(4).upper()
                if not s.query(User.id).filter(User.referral_code == code).first():
                    break
            user.referral_code = code
            s.flush()
            log_event("info", "referral.code_generated", user_id=user_id)
            return code

    def apply_referral_code(self, referred_user_id: str, code: str) -> Dict:
        normalized = (code or "").strip().upper()
        if not normalized:
            raise InvalidInput("Referral code is required")
        with self._session_factory() as s:
            referrer = s.query(User).filter(User.referral_code == normalized).first()
            if referrer is None:
                raise NotFound("Invalid referral code")
            if referrer.id == referred_user_id:
                raise InvalidInput("You cannot use your own referral code")
            if s.query(Referral.id).filter(Referral.referred_user_id == referred_user_id).first():
                raise Conflict("You have already been referred")
            referral = Referral(
                referrer_id=referrer.id,
                referred_user_id=referred_user_id,
                status=REFERRAL_PENDING,
                created_at=self._clock(),
                discount_percent=self.discount_percent,
            )
            s.add(referral)
            try:
                s.flush()
            except IntegrityError:
                raise Conflict("You have already been referred")
            log_event("info", "referral.applied", referrer_id=referrer.id, referred_user_id=referred_user_id)
            return {"success": True, "referralId": referral.id}

    def complete_referral(self, referred_user_id: str, order_id: str) -> bool:
        """PENDING -> COMPLETED for the referred user's first order; no-op otherwise."""
        with self._session_factory() as s:
            result = s.execute(
                update(Referral)
                .where(Referral.referred_user_id == referred_user_id, Referral.status == REFERRAL_PENDING)
                .values(status=REFERRAL_COMPLETED, completed_order_id=order_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                log_event("info", "referral.completed", referred_user_id=referred_user_id, order_id=order_id)
            return bool(result.rowcount)

    def _count(self, session, user_id: str, *statuses: str) -> int:
        return (
            session.query(func.count(Referral.id))
            .filter(Referral.referrer_id == user_id, Referral.status.in_(statuses))
            .scalar()
            or 0
        )

    def check_referral_reward(self, user_id: str, *, session=None) -> Dict:
        with use_session(self._session_factory, session) as s:
            completed = self._count(s, user_id, REFERRAL_COMPLETED, REFERRAL_REWARDED)
            rewarded = self._count(s, user_id, REFERRAL_REWARDED)
        unrewarded = completed - rewarded
        return {
            "eligible": unrewarded >= self.threshold,
            "completed_count": completed,
            "unrewarded_count": unrewarded,
            "discount_percent": self.discount_percent,
        }

    def consume_reward(self, user_id: str, *, session=None) -> bool:
        """Claim the oldest ``threshold`` COMPLETED referrals.

        Returns False when there is no full batch to claim. Raises Conflict
        when a concurrent claim took part of the batch, which rolls back the
        caller's transaction.
        """
        with use_session(self._session_factory, session) as s:
            ids = [
                row.id
                for row in s.query(Referral.id)
                .filter(Referral.referrer_id == user_id, Referral.status == REFERRAL_COMPLETED)
                .order_by(Referral.created_at.asc(), Referral.id.asc())
                .limit(self.threshold)
                .all()
            ]
            if len(ids) < self.threshold:
                return False
            result = s.execute(
                update(Referral)
                .where(Referral.id.in_(ids), Referral.status == REFERRAL_COMPLETED)
                .values(status=REFERRAL_REWARDED, rewarded_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return False
            if result.rowcount != len(ids):
                raise Conflict("Referral reward is being redeemed by another order")
            log_event("info", "referral.reward_consumed", user_id=user_id, referrals=len(ids))
            return True

    def get_stats(self, user_id: str) -> Dict:
        code = self.generate_referral_code(user_id)
        with self._session_factory() as s:
            total = self._count(s, user_id, REFERRAL_PENDING, REFERRAL_COMPLETED, REFERRAL_REWARDED)
            pending = self._count(s, user_id, REFERRAL_PENDING)
            reward = self.check_referral_reward(user_id, session=s)
        return {
            "referralCode": code,
            "totalReferred": total,
            "completed": reward["completed_count"],
            "pending": pending,
            "rewardEligible": reward["eligible"],
            "discountPercent": reward["discount_percent"],
            "threshold": self.threshold,
            "remaining": max(0, self.threshold - reward["unrewarded_count"]),
        }
