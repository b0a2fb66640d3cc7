"""
In-memory credit ledger for local development and tests.
"""

import logging
import threading
from typing import Dict, Any, Optional

from .base import CreditLedgerAdapter
from ..errors import InsufficientCredits

logger = logging.getLogger("analysis_worker")


class InMemoryCreditLedger(CreditLedgerAdapter):
    """Dictionary-backed credit ledger"""

    def __init__(self, balances: Optional[Dict[str, int]] = None, initial_balance: int = 0):
        self.balances: Dict[str, int] = dict(balances or {})
        self.initial_balance = initial_balance
        self.charges: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get_balance(self, user_id: str) -> int:
        with self._lock:
            return self.balances.get(user_id, self.initial_balance)

    def debit(self, user_id: str, amount: int, idempotency_key: str, description: str = "") -> int:
        with self._lock:
            balance = self.balances.get(user_id, self.initial_balance)
            if idempotency_key in self.charges:
                return balance
            if balance < amount:
                raise InsufficientCredits(
                    f"Insufficient credits: required {amount}, available {balance}",
                    required=amount,
                    available=balance
                )
            self.balances[user_id] = balance - amount
            self.charges[idempotency_key] = amount

        logger.info(f"Debited {amount} credits from user {user_id}, new balance {balance - amount}")
        return balance - amount

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'usage_transactions': len(self.charges),
                'credits_used': sum(self.charges.values())
            }
