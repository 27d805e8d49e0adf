from __future__ import annotations

import dataclasses
import logging
from typing import List, Mapping, Optional

from engine.errors import InvalidArgumentError, NotFoundError, is_positive
from engine.risk_gate import RiskAssessment, RiskGate, Transaction, UserProfile, detect_anomalies
from infrastructure.transaction_store import TransactionStore

logger = logging.getLogger(__name__)


class TransactionProcessor:
    """
    Direct risk-assessment requests, outside the trading flow.

    A transaction submitted here is validated, scored by the same RiskGate the
    TradingCoordinator uses and persisted with its score attached.
    """

    def __init__(
        self,
        store: TransactionStore,
        risk_gate: RiskGate,
        profiles: Optional[Mapping[str, UserProfile]] = None,
    ):
        self.store = store
        self.risk_gate = risk_gate
        self.profiles: Mapping[str, UserProfile] = profiles if profiles is not None else {}

    @staticmethod
    def validate(transaction: Transaction) -> None:
        if transaction.amount is None or not is_positive(transaction.amount):
            raise InvalidArgumentError("Transaction amount must be greater than zero.")
        if not transaction.user_id:
            raise InvalidArgumentError("Transaction user_id cannot be empty.")

    def assess(self, transaction: Transaction) -> RiskAssessment:
        """Score without persisting."""
        self.validate(transaction)
        return self.risk_gate.assess(transaction, self.profiles.get(transaction.user_id))

    def process(self, transaction: Transaction) -> Transaction:
        """Validate, score and persist. Returns the stored record."""
        assessment = self.assess(transaction)
        stored = self.store.save(dataclasses.replace(transaction, risk_score=assessment.score))
        logger.info("Transaction %s for %s scored %.2f (%s)",
                    stored.id, stored.user_id, assessment.score, assessment.level.name)
        return stored

    def get(self, transaction_id: int) -> Transaction:
        found = self.store.find_by_id(transaction_id)
        if found is None:
            raise NotFoundError(f"Transaction not found with id: {transaction_id}")
        return found

    def delete(self, transaction_id: int) -> None:
        if self.store.find_by_id(transaction_id) is None:
            raise NotFoundError(f"Transaction not found with id: {transaction_id}")
        self.store.delete_by_id(transaction_id)

    def list_all(self) -> List[Transaction]:
        return self.store.find_all()

    def anomalies(self) -> List[Transaction]:
        transactions = self.store.find_all()
        flagged = detect_anomalies(transactions)
        logger.info("Detected %d anomalous transactions out of %d", len(flagged), len(transactions))
        return flagged
