"""
Pre-trade risk gate.

The trading core only depends on the RiskGate contract:

    assess(transaction, profile) -> RiskAssessment(score in [0, 1], level)

Levels are bucketed from the score:
    LOW     score < 0.3
    MEDIUM  score < 0.7
    HIGH    otherwise (blocks execution)

HeuristicRiskGate is the stock scorer. It is intentionally simple:
- Large amount (> 10,000)            +0.3
- Outside business hours (07-23h)    +0.2
- Profile flagged as high risk       +0.2
Score is capped at 1.0.

detect_anomalies() is the batch side of the same heuristics, run over stored
transactions rather than one prospective trade:
- Amount: the top ranks from the 95th percentile position up (ties broken
  by arrival order)
- Frequency: more than 5 transactions for one user within one clock hour
- Time: transactions outside business hours
"""
from __future__ import annotations

import math
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np

LOW_THRESHOLD = 0.3
HIGH_THRESHOLD = 0.7


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_score(cls, score: float) -> "RiskLevel":
        if score < LOW_THRESHOLD:
            return cls.LOW
        if score < HIGH_THRESHOLD:
            return cls.MEDIUM
        return cls.HIGH


@dataclass(frozen=True)
class RiskAssessment:
    score: float
    level: RiskLevel

    @classmethod
    def of(cls, score: float) -> "RiskAssessment":
        score = min(max(float(score), 0.0), 1.0)
        return cls(score, RiskLevel.from_score(score))

    @property
    def blocks_execution(self) -> bool:
        return self.level == RiskLevel.HIGH


@dataclass(frozen=True)
class Transaction:
    """
    Risk-assessment record.

    Immutable: the store hands back a copy with id filled in, and a risk
    score is attached with dataclasses.replace before saving.
    """
    user_id: str
    amount: float
    type: str
    source_account_id: str
    destination_account_id: str
    timestamp: float = field(default_factory=time.time)
    risk_score: Optional[float] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class UserProfile:
    user_id: str
    username: str = ""
    high_risk: bool = False


class RiskGate(Protocol):
    def assess(self, transaction: Transaction, profile: Optional[UserProfile]) -> RiskAssessment:
        ...


class HeuristicRiskGate:
    """
    Rule-of-thumb scorer.

    Args:
        large_amount: amount above which a transaction counts as large
        business_hours: (start, end) inclusive local hours considered normal
        high_risk_penalty: added for profiles flagged high_risk
    """

    def __init__(
        self,
        large_amount: float = 10_000.0,
        business_hours: Tuple[int, int] = (7, 23),
        large_amount_penalty: float = 0.3,
        off_hours_penalty: float = 0.2,
        high_risk_penalty: float = 0.2,
    ):
        start, end = business_hours
        if not (0 <= start <= 23 and 0 <= end <= 23 and start <= end):
            raise ValueError(f"invalid business_hours: {business_hours}")
        self.large_amount = float(large_amount)
        self.business_hours = (int(start), int(end))
        self.large_amount_penalty = large_amount_penalty
        self.off_hours_penalty = off_hours_penalty
        self.high_risk_penalty = high_risk_penalty

    def is_off_hours(self, timestamp: float) -> bool:
        hour = datetime.fromtimestamp(timestamp).hour
        start, end = self.business_hours
        return hour < start or hour > end

    def transaction_score(self, transaction: Transaction) -> float:
        """Score from the transaction alone (no profile)."""
        score = 0.0
        if transaction.amount > self.large_amount:
            score += self.large_amount_penalty
        if self.is_off_hours(transaction.timestamp):
            score += self.off_hours_penalty
        return min(score, 1.0)

    def assess(self, transaction: Transaction, profile: Optional[UserProfile]) -> RiskAssessment:
        score = self.transaction_score(transaction)
        if profile is not None and profile.high_risk:
            score += self.high_risk_penalty
        return RiskAssessment.of(min(score, 1.0))


# ==================== Batch anomaly detection ====================

def _amount_anomalies(transactions: Sequence[Transaction], percentile: float) -> List[Transaction]:
    amounts = np.array([t.amount for t in transactions], dtype=float)
    # top ranks only: ties below the cut stay unflagged
    order = np.argsort(amounts, kind="stable")
    idx = max(int(math.ceil(len(order) * percentile / 100.0)) - 1, 0)
    return [transactions[i] for i in order[idx:]]


def _frequency_anomalies(transactions: Sequence[Transaction], threshold: int) -> List[Transaction]:
    buckets: Dict[Tuple[str, int, int, int], List[Transaction]] = defaultdict(list)
    for t in transactions:
        ts = datetime.fromtimestamp(t.timestamp)
        buckets[(t.user_id, ts.year, ts.timetuple().tm_yday, ts.hour)].append(t)

    out: List[Transaction] = []
    for group in buckets.values():
        if len(group) > threshold:
            out.extend(group)
    return out


def detect_anomalies(
    transactions: Sequence[Transaction],
    amount_percentile: float = 95.0,
    frequency_threshold: int = 5,
    business_hours: Tuple[int, int] = (7, 23),
) -> List[Transaction]:
    """
    Flag suspicious transactions.

    Union of the amount, frequency and time rules, each transaction reported
    once, in the order it was first flagged. The amount rule always flags at
    least the largest transaction of a non-empty batch.
    """
    if not transactions:
        return []

    start, end = business_hours
    off_hours = [
        t for t in transactions
        if not start <= datetime.fromtimestamp(t.timestamp).hour <= end
    ]

    flagged: List[Transaction] = []
    seen = set()
    for t in (_amount_anomalies(transactions, amount_percentile)
              + _frequency_anomalies(transactions, frequency_threshold)
              + off_hours):
        key = id(t)
        if key in seen:
            continue
        seen.add(key)
        flagged.append(t)
    return flagged
