from datetime import timedelta

import pytest

from conftest import NOW, InterleavedSession, claim_referrals
from storefront.errors import Conflict, InvalidInput, NotFound
from storefront.models import Referral, User


def test_generate_code_is_stable(referrals, seed):
    seed.user("alice")

    code = referrals.generate_referral_code("alice")

    assert len(code) == 8
    assert code == code.upper()
    assert referrals.generate_referral_code("alice") == code
    assert seed.get(User, "alice").referral_code == code


def test_generate_code_unknown_user(referrals):
    with pytest.raises(NotFound):
        referrals.generate_referral_code("ghost")


class TestApply:
    def test_apply_creates_pending_referral(self, referrals, seed):
        seed.user("alice", referral_code="ALICE123")

        result = referrals.apply_referral_code("bob", " alice123 ")

        assert result["success"] is True
        assert seed.referral_statuses("alice") == ["PENDING"]

    def test_invalid_code(self, referrals):
        with pytest.raises(NotFound):
            referrals.apply_referral_code("bob", "NOPE0000")

    def test_blank_code(self, referrals):
        with pytest.raises(InvalidInput):
            referrals.apply_referral_code("bob", "  ")

    def test_self_referral(self, referrals, seed):
        seed.user("alice", referral_code="ALICE123")
        with pytest.raises(InvalidInput, match="own referral code"):
            referrals.apply_referral_code("alice", "ALICE123")

    def test_referred_only_once(self, referrals, seed):
        seed.user("alice", referral_code="ALICE123")
        seed.user("carol", referral_code="CAROL123")
        referrals.apply_referral_code("bob", "ALICE123")

        with pytest.raises(Conflict):
            referrals.apply_referral_code("bob", "CAROL123")
        assert seed.referral_statuses("carol") == []


class TestCompletion:
    def test_complete_moves_pending_once(self, referrals, seed):
        seed.referral("alice", status="PENDING", referred_user_id="bob")

        assert referrals.complete_referral("bob", "SELA-0000-0000-0001") is True
        assert referrals.complete_referral("bob", "SELA-0000-0000-0002") is False
        assert seed.referral_statuses("alice") == ["COMPLETED"]

    def test_complete_without_referral(self, referrals):
        assert referrals.complete_referral("stranger", "SELA-0000-0000-0001") is False


class TestReward:
    def test_eligible_after_threshold(self, referrals, seed):
        for _ in range(2):
            seed.referral("alice")
        seed.referral("alice", status="PENDING")
        assert referrals.check_referral_reward("alice")["eligible"] is False

        seed.referral("alice")
        reward = referrals.check_referral_reward("alice")

        assert reward == {
            "eligible": True,
            "completed_count": 3,
            "unrewarded_count": 3,
            "discount_percent": 15,
        }

    def test_consume_claims_one_batch(self, referrals, seed):
        for _ in range(3):
            seed.referral("alice")

        assert referrals.consume_reward("alice") is True
        assert referrals.consume_reward("alice") is False

        reward = referrals.check_referral_reward("alice")
        assert reward["eligible"] is False
        assert reward["completed_count"] == 3
        assert reward["unrewarded_count"] == 0
        assert seed.referral_statuses("alice") == ["REWARDED"] * 3

    def test_consume_takes_oldest_first(self, referrals, seed):
        for days in (5, 4, 3, 2):
            seed.referral("alice", created_at=NOW - timedelta(days=days))
        newest = seed.referral("alice", created_at=NOW - timedelta(days=1))

        assert referrals.consume_reward("alice") is True

        assert seed.referral_statuses("alice") == ["COMPLETED", "COMPLETED", "REWARDED", "REWARDED", "REWARDED"]
        assert seed.get(type(newest), newest.id).status == "COMPLETED"

    def test_same_timestamp_consumed_in_insertion_order(self, referrals, seed):
        created = NOW - timedelta(days=1)
        rows = [seed.referral("alice", created_at=created) for _ in range(4)]

        assert referrals.consume_reward("alice") is True

        statuses = [seed.get(Referral, r.id).status for r in rows]
        assert statuses == ["REWARDED", "REWARDED", "REWARDED", "COMPLETED"]

    def test_second_batch_needs_three_more(self, referrals, seed):
        for _ in range(5):
            seed.referral("alice")
        assert referrals.consume_reward("alice") is True
        assert referrals.check_referral_reward("alice")["eligible"] is False

        seed.referral("alice")
        assert referrals.check_referral_reward("alice")["eligible"] is True


def test_stats(referrals, seed):
    seed.user("alice", referral_code="ALICE123")
    seed.referral("alice")
    seed.referral("alice", status="PENDING")

    stats = referrals.get_stats("alice")

    assert stats == {
        "referralCode": "ALICE123",
        "totalReferred": 2,
        "completed": 1,
        "pending": 1,
        "rewardEligible": False,
        "discountPercent": 15,
        "threshold": 3,
        "remaining": 2,
    }


class TestClaimRace:
    def test_batch_taken_by_other_claim_returns_false(self, referrals, seed, session_factory):
        for _ in range(3):
            seed.referral("alice")

        with session_factory() as s:
            racing = InterleavedSession(s, claim_referrals("alice", 3))
            assert referrals.consume_reward("alice", session=racing) is False

        assert seed.referral_statuses("alice") == ["REWARDED"] * 3

    def test_partial_claim_raises_and_rolls_back(self, referrals, seed, session_factory):
        for _ in range(3):
            seed.referral("alice")

        with pytest.raises(Conflict):
            with session_factory() as s:
                referrals.consume_reward("alice", session=InterleavedSession(s, claim_referrals("alice", 1)))

        assert seed.referral_statuses("alice") == ["COMPLETED"] * 3
        assert referrals.check_referral_reward("alice")["eligible"] is True
