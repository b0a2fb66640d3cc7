"""
Postgres credit ledger.

Reads balances from user_profiles and records usage in
credit_transactions. A debit locks the profile row for the duration of
the transaction so concurrent settlements cannot overdraw a balance.
"""

import logging
from typing import Optional, Dict, Any

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from .base import CreditLedgerAdapter
from ..errors import InsufficientCredits
from ..logging_setup import log_exception

logger = logging.getLogger("analysis_worker")


class PostgresCreditLedger(CreditLedgerAdapter):
    """Postgres implementation of the credit ledger"""

    def __init__(self, database_url: str, pool_size: int = 5, timeout: int = 10):
        self.database_url = database_url
        self.pool_size = pool_size
        self.timeout = timeout
        self.pool: Optional[ConnectionPool] = None

    def connect(self):
        """Initialize connection pool"""
        try:
            self.pool = ConnectionPool(
                self.database_url,
                min_size=1,
                max_size=self.pool_size,
                kwargs={
                    "connect_timeout": self.timeout,
                    "application_name": "analysis_worker"
                }
            )
            logger.info("Postgres credit ledger connection pool initialized")
            self._bootstrap_schema()
        except Exception as e:
            log_exception(logger, f"Failed to connect to Postgres credit ledger: {e}")
            raise

    def _bootstrap_schema(self):
        """Add the idempotency column used to deduplicate usage charges"""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("ALTER TABLE credit_transactions ADD COLUMN IF NOT EXISTS analysis_id TEXT;")
                cur.execute("""
                    CREATE UNIQUE INDEX IF NOT EXISTS credit_transactions_usage_analysis_idx
                    ON credit_transactions (analysis_id)
                    WHERE transaction_type = 'usage' AND analysis_id IS NOT NULL;
                """)
                conn.commit()
                logger.info("Postgres credit ledger schema validated")

    def get_balance(self, user_id: str) -> int:
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute("SELECT credits_balance FROM user_profiles WHERE id = %s", (user_id,))
                row = cur.fetchone()
                if row is None:
                    raise InsufficientCredits(f"No credit profile for user {user_id}", required=0, available=0)
                return int(row['credits_balance'] or 0)

    def debit(self, user_id: str, amount: int, idempotency_key: str, description: str = "") -> int:
        """Deduct credits inside a single transaction, keyed by analysis id"""
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    "SELECT credits_balance FROM user_profiles WHERE id = %s FOR UPDATE",
                    (user_id,)
                )
                row = cur.fetchone()
                if row is None:
                    conn.rollback()
                    raise InsufficientCredits(f"No credit profile for user {user_id}", required=amount, available=0)
                balance = int(row['credits_balance'] or 0)

                cur.execute(
                    """
                    SELECT 1 FROM credit_transactions
                    WHERE analysis_id = %s AND transaction_type = 'usage'
                    """,
                    (idempotency_key,)
                )
                if cur.fetchone():
                    conn.rollback()
                    logger.info(f"Charge for analysis {idempotency_key} already recorded, skipping")
                    return balance

                if balance < amount:
                    conn.rollback()
                    raise InsufficientCredits(
                        f"Insufficient credits: required {amount}, available {balance}",
                        required=amount,
                        available=balance
                    )

                cur.execute(
                    """
                    UPDATE user_profiles
                    SET credits_balance = credits_balance - %s,
                        total_credits_used = COALESCE(total_credits_used, 0) + %s
                    WHERE id = %s
                    RETURNING credits_balance
                    """,
                    (amount, amount, user_id)
                )
                new_balance = int(cur.fetchone()['credits_balance'])

                cur.execute(
                    """
                    INSERT INTO credit_transactions
                        (user_id, transaction_type, credits_amount, description, analysis_id)
                    VALUES (%s, 'usage', %s, %s, %s)
                    """,
                    (user_id, amount, description or f"Video analysis {idempotency_key}", idempotency_key)
                )
                conn.commit()

        logger.info(f"Debited {amount} credits from user {user_id}, new balance {new_balance}")
        return new_balance

    def get_stats(self) -> Dict[str, Any]:
        """Get usage statistics"""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT COUNT(*), COALESCE(SUM(credits_amount), 0)
                    FROM credit_transactions
                    WHERE transaction_type = 'usage'
                """)
                count, total = cur.fetchone()
                return {'usage_transactions': count, 'credits_used': int(total)}

    def close(self):
        """Close connection pool"""
        if self.pool:
            self.pool.close()
            logger.info("Postgres credit ledger connection pool closed")
