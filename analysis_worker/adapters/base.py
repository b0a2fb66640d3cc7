"""
Abstract base classes for external collaborators.

Defines the narrow interfaces the pipeline needs from the credit ledger
and from remote media stores, so implementations (Postgres, in-memory,
S3, ...) can be swapped through configuration.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any


class CreditLedgerAdapter(ABC):
    """Abstract base class for credit ledgers"""

    def connect(self) -> None:
        """Open connections, if the ledger needs any"""

    @abstractmethod
    def get_balance(self, user_id: str) -> int:
        """
        Read the current balance of a user.

        Args:
            user_id: ID of the user

        Returns:
            Current credit balance
        """
        pass

    @abstractmethod
    def debit(self, user_id: str, amount: int, idempotency_key: str, description: str = "") -> int:
        """
        Deduct credits from a user.

        Repeating a debit with the same idempotency key must not charge twice.

        Args:
            user_id: ID of the user to charge
            amount: Number of credits to deduct
            idempotency_key: Key identifying this charge (the job id)
            description: Human readable description of the charge

        Returns:
            Balance after the debit

        Raises:
            InsufficientCredits: balance does not cover the amount
        """
        pass

    def get_stats(self) -> Dict[str, Any]:
        return {}

    def close(self) -> None:
        """Release connections"""


class MediaSourceAdapter(ABC):
    """Abstract base class for remote video stores"""

    @abstractmethod
    def download(self, uri: str, dest_dir: str) -> str:
        """
        Download a remote video into a local directory.

        Args:
            uri: Remote location of the video
            dest_dir: Directory to place the file in

        Returns:
            Local path of the downloaded file

        Raises:
            ExtractionFailure: the object could not be fetched
        """
        pass
