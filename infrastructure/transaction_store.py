from __future__ import annotations

import dataclasses
import itertools
import logging
from threading import RLock
from typing import Dict, List, Optional, Protocol

from engine.risk_gate import Transaction
from infrastructure.persistence import atomic_write_jsonl, read_jsonl

logger = logging.getLogger(__name__)


class TransactionStore(Protocol):
    """Durable store contract the core writes settlement records to."""

    def save(self, transaction: Transaction) -> Transaction: ...

    def find_by_id(self, transaction_id: int) -> Optional[Transaction]: ...

    def delete_by_id(self, transaction_id: int) -> None: ...

    def find_all(self) -> List[Transaction]: ...


class InMemoryTransactionStore:
    """
    Thread-safe TransactionStore kept in a dict.

    - save() assigns a monotonically increasing integer id and returns the
      stored copy; records are never modified after that
    - dump()/load() round-trip the contents through JSONL
    """

    def __init__(self):
        self._lock = RLock()
        self._records: Dict[int, Transaction] = {}
        self._ids = itertools.count(1)

    def save(self, transaction: Transaction) -> Transaction:
        with self._lock:
            if transaction.id is not None and transaction.id in self._records:
                raise ValueError(f"Transaction {transaction.id} already persisted")
            stored = dataclasses.replace(transaction, id=next(self._ids))
            self._records[stored.id] = stored
        logger.debug("Saved transaction %s (%s %.2f)", stored.id, stored.type, stored.amount)
        return stored

    def find_by_id(self, transaction_id: int) -> Optional[Transaction]:
        with self._lock:
            return self._records.get(transaction_id)

    def delete_by_id(self, transaction_id: int) -> None:
        with self._lock:
            self._records.pop(transaction_id, None)

    def exists(self, transaction_id: int) -> bool:
        with self._lock:
            return transaction_id in self._records

    def find_all(self) -> List[Transaction]:
        with self._lock:
            return list(self._records.values())

    def find_by_user(self, user_id: str) -> List[Transaction]:
        with self._lock:
            return [t for t in self._records.values() if t.user_id == user_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ---------- file export ----------

    def dump(self, path: str) -> int:
        with self._lock:
            records = list(self._records.values())
        n = atomic_write_jsonl(path, records)
        logger.info("Wrote %d transactions to %s", n, path)
        return n

    @classmethod
    def load(cls, path: str) -> "InMemoryTransactionStore":
        store = cls()
        max_id = 0
        for row in read_jsonl(path):
            txn = Transaction(**row)
            store._records[txn.id] = txn
            max_id = max(max_id, txn.id)
        store._ids = itertools.count(max_id + 1)
        return store
