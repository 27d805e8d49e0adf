"""
Risk gate tests.

Coverage:
- Score -> level buckets
- Heuristic rules (amount, business hours, profile)
- Batch anomaly detection rules
"""
from datetime import datetime

import pytest

from conftest import NIGHT, NOON
from engine.risk_gate import (
    HeuristicRiskGate,
    RiskAssessment,
    RiskLevel,
    Transaction,
    UserProfile,
    detect_anomalies,
)


def txn(amount=100.0, ts=NOON, user="u1"):
    return Transaction(user, amount, "TRADE_BUY", user, "EXCHANGE", timestamp=ts)


class TestRiskLevels:

    @pytest.mark.parametrize("score,level", [
        (0.0, RiskLevel.LOW),
        (0.29, RiskLevel.LOW),
        (0.3, RiskLevel.MEDIUM),
        (0.69, RiskLevel.MEDIUM),
        (0.7, RiskLevel.HIGH),
        (1.0, RiskLevel.HIGH),
    ])
    def test_buckets(self, score, level):
        assert RiskLevel.from_score(score) == level

    def test_assessment_clamps_score(self):
        assert RiskAssessment.of(1.7).score == 1.0
        assert RiskAssessment.of(-0.2).score == 0.0

    def test_only_high_blocks(self):
        assert RiskAssessment.of(0.7).blocks_execution
        assert not RiskAssessment.of(0.69).blocks_execution


class TestHeuristicRiskGate:

    def setup_method(self):
        self.gate = HeuristicRiskGate()

    def test_small_daytime_trade_is_low(self):
        result = self.gate.assess(txn(), None)
        assert result.score == 0.0
        assert result.level == RiskLevel.LOW

    def test_large_amount(self):
        result = self.gate.assess(txn(amount=10_001.0), None)
        assert result.score == pytest.approx(0.3)
        assert result.level == RiskLevel.MEDIUM

    def test_threshold_amount_is_not_large(self):
        assert self.gate.assess(txn(amount=10_000.0), None).score == 0.0

    def test_off_hours(self):
        assert self.gate.assess(txn(ts=NIGHT), None).score == pytest.approx(0.2)

    def test_business_hours_are_inclusive(self):
        late = datetime(2024, 1, 15, 23, 30).timestamp()
        early = datetime(2024, 1, 15, 7, 0).timestamp()
        before = datetime(2024, 1, 15, 6, 59).timestamp()
        assert not self.gate.is_off_hours(late)
        assert not self.gate.is_off_hours(early)
        assert self.gate.is_off_hours(before)

    def test_high_risk_profile_adds_penalty(self):
        profile = UserProfile("u1", "alice", high_risk=True)
        assert self.gate.assess(txn(), profile).score == pytest.approx(0.2)

    def test_all_rules_together_block(self):
        profile = UserProfile("u1", "alice", high_risk=True)
        result = self.gate.assess(txn(amount=50_000.0, ts=NIGHT), profile)
        assert result.score == pytest.approx(0.7)
        assert result.level == RiskLevel.HIGH
        assert result.blocks_execution

    def test_missing_profile_scored_without_penalty(self):
        assert self.gate.assess(txn(amount=50_000.0), None).level == RiskLevel.MEDIUM

    def test_invalid_business_hours(self):
        with pytest.raises(ValueError):
            HeuristicRiskGate(business_hours=(20, 5))


class TestAnomalyDetection:

    def test_empty_batch(self):
        assert detect_anomalies([]) == []

    def test_single_transaction_flagged_as_largest(self):
        only = txn()
        assert detect_anomalies([only]) == [only]

    def test_amount_rule_flags_top_percentile(self):
        batch = [txn(amount=float(a), user=f"u{a}") for a in range(1, 21)]
        flagged = detect_anomalies(batch)
        assert sorted(t.amount for t in flagged) == [19.0, 20.0]

    def test_tied_amounts_flag_top_ranks_only(self):
        """Equal amounts are ranked by arrival; only the top 5% are flagged."""
        batch = [txn(amount=100.0, user=f"u{i}") for i in range(20)]
        flagged = detect_anomalies(batch)
        assert [t.user_id for t in flagged] == ["u18", "u19"]

    def test_amount_rule_returns_ascending_ranks(self):
        batch = [txn(amount=a, user=f"u{a:g}") for a in (500.0, 1.0, 400.0)]
        flagged = detect_anomalies(batch, amount_percentile=50.0)
        assert [t.amount for t in flagged] == [400.0, 500.0]

    def test_frequency_rule(self):
        """More than five trades by one user in one clock hour are all flagged."""
        burst = [txn(amount=1.0, ts=NOON + i, user="busy") for i in range(6)]
        calm = [txn(amount=1.0, ts=NOON + i, user=f"calm{i}") for i in range(5)]
        big = txn(amount=1_000.0, user="whale")

        flagged = detect_anomalies(burst + calm + [big])

        assert big in flagged
        for t in burst:
            assert t in flagged
        for t in calm:
            assert t not in flagged

    def test_five_in_an_hour_is_fine(self):
        batch = [txn(amount=1.0, ts=NOON + i, user="u") for i in range(5)]
        batch.append(txn(amount=10.0, user="other"))
        flagged = detect_anomalies(batch)
        assert [t.user_id for t in flagged] == ["other"]

    def test_off_hours_rule(self):
        night = txn(amount=5.0, ts=NIGHT, user="owl")
        day = [txn(amount=float(a), user=f"d{a}") for a in range(1, 21)]
        flagged = detect_anomalies(day + [night])
        assert night in flagged

    def test_each_transaction_reported_once(self):
        """A trade hit by several rules appears once."""
        big_night = txn(amount=9_999.0, ts=NIGHT)
        flagged = detect_anomalies([txn(amount=1.0, user="x"), big_night])
        assert flagged.count(big_night) == 1
