"""
Budget Engine

Owns the budget of a period and its buckets: allocation from an income
and a needs/wants/savings split, bucket edits, and the spend aggregates
shown after every commit.

DESIGN DECISION: Transactions reference buckets by name, not by id.
The parser writes whatever bucket label the model chose, so the label
is the join key. That is why a rename must relabel existing
transactions, and why two buckets sharing a name is an error state this
engine refuses to resolve by guessing.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from chatledger.amounts import round_to_unit
from chatledger.audit import AuditLogger
from chatledger.config import LedgerSettings, get_settings
from chatledger.models.audit import AuditEventBuilder
from chatledger.models.ledger import (
    UNALLOCATED_BUCKET,
    Bucket,
    BucketCategory,
    BucketDraft,
    BucketSummary,
    Budget,
    BudgetAllocation,
    BudgetSummary,
    CategoryShare,
    Period,
    Target,
    TransactionType,
)
from chatledger.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


class BudgetError(Exception):
    """Base exception for budget operations."""
    pass


class InvalidAllocation(BudgetError, ValueError):
    """Percentages don't add up or an amount is negative."""
    pass


class BucketNotFound(BudgetError):
    pass


class AmbiguousBucketDeletion(BudgetError):
    """More than one bucket in the budget shares the name."""
    pass


class DuplicateBucketName(BudgetError):
    pass


# name, description, icon
BUCKET_PRESETS: dict[BucketCategory, tuple[str, str, str]] = {
    BucketCategory.NEEDS: (
        "Needs",
        "Essentials: rent, bills, groceries, transport",
        "Home",
    ),
    BucketCategory.WANTS: (
        "Wants",
        "Lifestyle: dining out, entertainment, shopping",
        "ShoppingBag",
    ),
    BucketCategory.SAVINGS: (
        "Savings",
        "Emergency fund, investments, goals",
        "PiggyBank",
    ),
}


def suggest_percentages(income: Decimal) -> tuple[int, int, int]:
    """
    Recommended needs/wants/savings split for a monthly income.

    Lower incomes need a bigger share for essentials.
    """
    if income < 5_000_000:
        return 60, 30, 10
    if income < 15_000_000:
        return 50, 30, 20
    if income < 50_000_000:
        return 40, 40, 20
    return 30, 50, 20


def validate_percentages(needs: int, wants: int, savings: int) -> None:
    """
    Raises:
        InvalidAllocation: If any part is negative or the sum isn't 100
    """
    parts = (needs, wants, savings)
    if any(p < 0 for p in parts):
        raise InvalidAllocation(f"Percentages must not be negative: {parts}")
    if sum(parts) != 100:
        raise InvalidAllocation(f"Percentages must add up to 100, got {sum(parts)}")


def calculate_allocation(
    income: Decimal,
    needs: int,
    wants: int,
    savings: int,
    unit: int = 1000,
) -> BudgetAllocation:
    """Split income by percentage, each part rounded to the nearest unit."""
    validate_percentages(needs, wants, savings)
    if income < 0:
        raise InvalidAllocation("Income must not be negative")

    def part(pct: int) -> Decimal:
        return round_to_unit(income * Decimal(pct) / Decimal(100), unit)

    return BudgetAllocation(income=income, needs=part(needs), wants=part(wants), savings=part(savings))


def _find(buckets: list[Bucket], name: str) -> list[Bucket]:
    key = name.strip().casefold()
    return [b for b in buckets if b.name.casefold() == key]


def _unallocated_draft(income: Decimal) -> BucketDraft:
    return BucketDraft(
        name=UNALLOCATED_BUCKET,
        description="Income not yet split into buckets",
        amount=income,
        is_system=True,
    )


class BudgetEngine:
    """
    Budget and bucket operations for a period.

    Usage:
        engine = BudgetEngine(storage)
        await engine.allocate(period, Decimal("5000000"), 50, 30, 20)
        summary = await engine.summarize(target, period)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def get_budget(self, period: Period) -> Optional[Budget]:
        return await self._storage.get_budget(period.id)

    async def get_or_create_budget(self, period: Period) -> Budget:
        """Existing budget, or a new unallocated one with zero income."""
        budget = await self._storage.get_budget(period.id)
        if budget is None:
            budget = await self._storage.create_budget(
                period.id, Decimal("0"), [_unallocated_draft(Decimal("0"))]
            )
            logger.info("budget_created_unallocated", period_id=str(period.id))
        return budget

    async def bucket_names(self, period: Period) -> list[str]:
        budget = await self._storage.get_budget(period.id)
        return budget.bucket_names if budget else []

    async def allocate(
        self,
        period: Period,
        income: Decimal,
        needs: int,
        wants: int,
        savings: int,
    ) -> Budget:
        """
        Set income and replace the buckets with a needs/wants/savings split.

        Raises:
            InvalidAllocation: If the split is invalid
        """
        allocation = calculate_allocation(
            income, needs, wants, savings, unit=self._settings.rounding_unit
        )
        amounts = {
            BucketCategory.NEEDS: allocation.needs,
            BucketCategory.WANTS: allocation.wants,
            BucketCategory.SAVINGS: allocation.savings,
        }
        drafts = [
            BucketDraft(name=name, description=description, icon=icon, category=category, amount=amounts[category])
            for category, (name, description, icon) in BUCKET_PRESETS.items()
        ]
        budget = await self._write_buckets(period, income, drafts)
        split = f"{needs}/{wants}/{savings}"
        logger.info(
            "budget_allocated",
            period_id=str(period.id),
            income=str(income),
            split=split,
        )
        if self._audit:
            await self._audit.log(AuditEventBuilder.budget_allocated(
                period.target_id, period.id, str(income), split
            ))
        return budget

    async def allocate_unallocated(self, period: Period, income: Decimal) -> Budget:
        """Single system bucket holding the whole income."""
        if income < 0:
            raise InvalidAllocation("Income must not be negative")
        budget = await self._write_buckets(period, income, [_unallocated_draft(income)])
        if self._audit:
            await self._audit.log(AuditEventBuilder.budget_allocated(
                period.target_id, period.id, str(income), UNALLOCATED_BUCKET
            ))
        return budget

    async def _write_buckets(self, period: Period, income: Decimal, drafts: list[BucketDraft]) -> Budget:
        budget = await self._storage.get_budget(period.id)
        if budget is None:
            return await self._storage.create_budget(period.id, income, drafts)
        return await self._storage.replace_buckets(budget.id, income, drafts)

    async def copy_from(self, source: Period, destination: Period) -> Optional[Budget]:
        """
        Copy income and buckets of source into destination.

        No-op if source has no budget or destination already has one.
        """
        source_budget = await self._storage.get_budget(source.id)
        if source_budget is None:
            return None
        existing = await self._storage.get_budget(destination.id)
        if existing is not None:
            return existing

        drafts = [
            BucketDraft(
                name=b.name,
                description=b.description,
                category=b.category,
                amount=b.amount,
                icon=b.icon,
                is_system=b.is_system,
            )
            for b in source_budget.buckets
        ]
        logger.info("budget_copied", source=str(source.id), destination=str(destination.id))
        return await self._storage.create_budget(destination.id, source_budget.estimated_income, drafts)

    # =========================================================================
    # AGGREGATES
    # =========================================================================

    async def summarize(self, target: Target, period: Period) -> BudgetSummary:
        """Allocated / spent / remaining per bucket plus top categories."""
        budget = await self._storage.get_budget(period.id)
        buckets = budget.buckets if budget else []

        spent_by_key: dict[str, Decimal] = {}
        total_spent = Decimal("0")
        for name, amount in (await self._storage.sum_by_bucket(target, period.id)).items():
            key = (name or "").casefold()
            spent_by_key[key] = spent_by_key.get(key, Decimal("0")) + amount
            total_spent += amount

        summaries = []
        assigned = Decimal("0")
        for bucket in buckets:
            spent = spent_by_key.get(bucket.name.casefold(), Decimal("0"))
            assigned += spent
            summaries.append(BucketSummary(
                name=bucket.name,
                category=bucket.category,
                allocated=bucket.amount,
                spent=spent,
                remaining=bucket.amount - spent,
            ))

        income_rows = await self._storage.sum_by_bucket(target, period.id, TransactionType.INCOME)

        by_category = await self._storage.sum_by_category(target, period.id)
        ranked = sorted(by_category.items(), key=lambda item: item[1], reverse=True)
        top = [
            CategoryShare(
                name=name,
                amount=amount,
                share=float(amount / total_spent) if total_spent else 0.0,
            )
            for name, amount in ranked[: self._settings.top_categories]
        ]

        return BudgetSummary(
            period_name=period.name,
            income=budget.estimated_income if budget else Decimal("0"),
            buckets=summaries,
            total_spent=total_spent,
            total_income=sum(income_rows.values(), Decimal("0")),
            unassigned_spent=total_spent - assigned,
            top_categories=top,
        )

    # =========================================================================
    # BUCKET EDITS
    # =========================================================================

    async def upsert_bucket(
        self,
        period: Period,
        name: str,
        amount: Decimal,
        description: Optional[str] = None,
        category: Optional[BucketCategory] = None,
        bucket_id: Optional[UUID] = None,
    ) -> Bucket:
        """
        Create a bucket, or update one found by id (or by name).

        Renaming relabels the period's transactions that carry the old
        name, in the same database transaction.

        Raises:
            BucketNotFound: If bucket_id doesn't belong to the budget
            DuplicateBucketName: If the new name is taken by another bucket
            AmbiguousBucketDeletion: If the lookup name matches several buckets
        """
        budget = await self.get_or_create_budget(period)

        if bucket_id is not None:
            existing = next((b for b in budget.buckets if b.id == bucket_id), None)
            if existing is None:
                raise BucketNotFound(f"Bucket {bucket_id} is not part of {period.name}")
        else:
            matches = _find(budget.buckets, name)
            if len(matches) > 1:
                raise AmbiguousBucketDeletion(f"{len(matches)} buckets are named {name!r}")
            existing = matches[0] if matches else None

        clashes = [b for b in _find(budget.buckets, name) if existing is None or b.id != existing.id]
        if clashes:
            raise DuplicateBucketName(f"A bucket named {name!r} already exists")

        if existing is None:
            bucket = await self._storage.add_bucket(
                budget.id,
                BucketDraft(name=name, description=description, category=category, amount=amount),
            )
            action = "created"
        else:
            updated = existing.model_copy(update={
                "name": name.strip(),
                "amount": amount,
                "description": description if description is not None else existing.description,
                "category": category if category is not None else existing.category,
            })
            bucket = await self._storage.update_bucket(updated, period.id, previous_name=existing.name)
            action = "renamed" if existing.name != bucket.name else "updated"

        if self._audit:
            await self._audit.log(AuditEventBuilder.bucket_changed(
                period.target_id, period.id, bucket.id, bucket.name, action
            ))
        return bucket

    async def delete_bucket(self, period: Period, name: str, move_to: str) -> int:
        """
        Delete a bucket, relabelling its transactions to move_to.

        Returns:
            Number of transactions moved

        Raises:
            BucketNotFound: If either bucket doesn't exist
            AmbiguousBucketDeletion: If either name matches several buckets
        """
        budget = await self._storage.get_budget(period.id)
        buckets = budget.buckets if budget else []

        source = self._single(buckets, name)
        destination = self._single(buckets, move_to)
        if source.id == destination.id:
            raise BudgetError("Cannot move a bucket's transactions into itself")

        moved = await self._storage.delete_bucket(source.id, period.id, source.name, destination.name)
        logger.info(
            "bucket_deleted",
            period_id=str(period.id),
            bucket=source.name,
            moved_to=destination.name,
            transactions=moved,
        )
        if self._audit:
            await self._audit.log(AuditEventBuilder.bucket_changed(
                period.target_id, period.id, source.id, source.name, "deleted"
            ))
        return moved

    @staticmethod
    def _single(buckets: list[Bucket], name: str) -> Bucket:
        matches = _find(buckets, name)
        if not matches:
            raise BucketNotFound(f"No bucket named {name!r}")
        if len(matches) > 1:
            raise AmbiguousBucketDeletion(f"{len(matches)} buckets are named {name!r}")
        return matches[0]
