"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the ledger on SQLite locally and a server database in production
2. Keep business logic decoupled from the ORM
3. Make the atomicity requirements explicit at the seam

Two operations carry hard transactional guarantees and every
implementation must honour them:
- create_current_period: clearing is_current on the target's other
  periods and inserting the new current one happen in one transaction.
- save_transactions: every row of the batch is written, or none is.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from chatledger.models.ledger import (
    Bucket,
    BucketDraft,
    Budget,
    Category,
    Group,
    MemberRole,
    Period,
    Target,
    Transaction,
    TransactionDraft,
    TransactionType,
    UserAccount,
    UserTier,
)


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation must implement these methods.
    """

    # =========================================================================
    # USERS AND GROUPS
    # =========================================================================

    @abstractmethod
    async def get_user_by_external_id(self, external_id: int) -> Optional[UserAccount]:
        """Find a registered user by chat platform id."""
        pass

    @abstractmethod
    async def create_user(
        self,
        external_id: int,
        display_name: Optional[str],
        tier: UserTier,
    ) -> UserAccount:
        """
        Register a user.

        Raises:
            DuplicateError: If the external id is already registered
        """
        pass

    @abstractmethod
    async def set_income_day(self, target: Target, income_day: int) -> None:
        """Store the income day on the user or group behind target."""
        pass

    @abstractmethod
    async def get_group_by_chat_id(self, chat_id: int) -> Optional[Group]:
        pass

    @abstractmethod
    async def create_group(self, chat_id: int, name: str, owner_id: UUID) -> Group:
        """
        Create a group and add the owner as a member with role "owner".

        Both rows are written in one transaction.

        Raises:
            DuplicateError: If a group already exists for chat_id
        """
        pass

    @abstractmethod
    async def get_group(self, group_id: UUID) -> Optional[Group]:
        pass

    @abstractmethod
    async def get_member_role(self, group_id: UUID, user_id: UUID) -> Optional[MemberRole]:
        """Role of user in group, or None if not a member."""
        pass

    @abstractmethod
    async def add_group_member(
        self,
        group_id: UUID,
        user_id: UUID,
        role: MemberRole = MemberRole.MEMBER,
    ) -> None:
        """
        Add a user to a group.

        Raises:
            DuplicateError: If the user is already a member
        """
        pass

    # =========================================================================
    # PERIODS
    # =========================================================================

    @abstractmethod
    async def get_current_period(self, target: Target) -> Optional[Period]:
        pass

    @abstractmethod
    async def get_period_by_name(self, target: Target, name: str) -> Optional[Period]:
        pass

    @abstractmethod
    async def create_current_period(
        self,
        target: Target,
        name: str,
        start_date: date,
        end_date: date,
    ) -> Period:
        """
        Atomically clear is_current on all of target's periods and
        insert a new current period.

        Raises:
            DuplicateError: If target already has a period with this name
        """
        pass

    @abstractmethod
    async def set_current_period(self, target: Target, period_id: UUID) -> None:
        """Atomically make an existing period the only current one."""
        pass

    # =========================================================================
    # BUDGETS AND BUCKETS
    # =========================================================================

    @abstractmethod
    async def get_budget(self, period_id: UUID) -> Optional[Budget]:
        """Budget of a period with its buckets, or None."""
        pass

    @abstractmethod
    async def create_budget(
        self,
        period_id: UUID,
        estimated_income: Decimal,
        buckets: list[BucketDraft],
    ) -> Budget:
        """Create a budget and its buckets in one transaction."""
        pass

    @abstractmethod
    async def replace_buckets(
        self,
        budget_id: UUID,
        estimated_income: Decimal,
        buckets: list[BucketDraft],
    ) -> Budget:
        """Set income and swap all buckets of a budget in one transaction."""
        pass

    @abstractmethod
    async def add_bucket(self, budget_id: UUID, bucket: BucketDraft) -> Bucket:
        pass

    @abstractmethod
    async def update_bucket(
        self,
        bucket: Bucket,
        period_id: UUID,
        previous_name: Optional[str] = None,
    ) -> Bucket:
        """
        Update a bucket. If previous_name differs from bucket.name, every
        transaction of the period labelled previous_name is relabelled in
        the same transaction.

        Raises:
            NotFoundError: If the bucket doesn't exist
        """
        pass

    @abstractmethod
    async def delete_bucket(
        self,
        bucket_id: UUID,
        period_id: UUID,
        bucket_name: str,
        move_to: str,
    ) -> int:
        """
        Relabel the period's transactions from bucket_name to move_to and
        delete the bucket, in one transaction.

        Returns:
            Number of transactions moved
        """
        pass

    # =========================================================================
    # CATEGORIES AND TRANSACTIONS
    # =========================================================================

    @abstractmethod
    async def find_category(self, target: Target, name: str) -> Optional[Category]:
        """Case-insensitive category lookup scoped to target."""
        pass

    @abstractmethod
    async def save_transactions(
        self,
        target: Target,
        period_id: UUID,
        drafts: list[TransactionDraft],
    ) -> list[UUID]:
        """
        Insert (or update, when draft.transaction_id is set) all drafts.

        Categories are resolved with a case-insensitive find-or-create,
        once per distinct name. All rows are written in one transaction.

        Returns:
            Transaction ids in draft order

        Raises:
            NotFoundError: If an update refers to a missing transaction
            StorageError: If the write fails (nothing is written)
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        """Returns False if the transaction didn't exist."""
        pass

    @abstractmethod
    async def list_transactions(
        self,
        target: Target,
        period_id: UUID,
        limit: int = 20,
        bucket: Optional[str] = None,
        type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        """Most recent first."""
        pass

    @abstractmethod
    async def sum_by_bucket(
        self,
        target: Target,
        period_id: UUID,
        type: TransactionType = TransactionType.EXPENSE,
    ) -> dict[Optional[str], Decimal]:
        pass

    @abstractmethod
    async def sum_by_category(
        self,
        target: Target,
        period_id: UUID,
        type: TransactionType = TransactionType.EXPENSE,
    ) -> dict[str, Decimal]:
        pass

    # =========================================================================
    # CONTEXT SUMMARIES
    # =========================================================================

    @abstractmethod
    async def get_context_summary(self, target_id: UUID) -> str:
        """Standing summary for target; empty string if none yet."""
        pass

    @abstractmethod
    async def save_context_summary(self, target_id: UUID, summary: str) -> None:
        pass


# =============================================================================
# EXCEPTIONS
# =============================================================================

class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
