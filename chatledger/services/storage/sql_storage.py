"""
SQLAlchemy Storage Implementation

Implements LedgerStorageInterface on a relational database through
SQLAlchemy 2.0 ORM sessions. Any backend SQLAlchemy supports works;
SQLite is the default for local use and tests.

Every public method opens exactly one session_scope, so every method is
exactly one database transaction. Multi-row writes (batch commits, the
current-period swap, bucket rename cascades) are therefore atomic.
"""

from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from chatledger.config import get_settings
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
from chatledger.services.storage.database import (
    Base,
    build_engine,
    build_session_factory,
    session_scope,
)
from chatledger.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from chatledger.services.storage.tables import (
    BucketRow,
    BudgetRow,
    CategoryRow,
    ContextSummaryRow,
    GroupMemberRow,
    GroupRow,
    PeriodRow,
    TransactionRow,
    UserRow,
)


logger = structlog.get_logger(__name__)


def _scope_key(target: Target) -> str:
    return f"{target.kind}:{target.target_id}"


def _owner_columns(target: Target) -> dict:
    """user_id/group_id for rows owned by the target itself."""
    if target.is_group:
        return {"user_id": None, "group_id": target.target_id}
    return {"user_id": target.target_id, "group_id": None}


# =============================================================================
# ROW CONVERSION
# =============================================================================

def _user(row: UserRow) -> UserAccount:
    return UserAccount(
        id=row.id,
        external_id=row.external_id,
        display_name=row.display_name,
        tier=row.tier,
        income_day=row.income_day,
        is_active=row.is_active,
        created_at=row.created_at,
    )


def _group(row: GroupRow) -> Group:
    return Group(
        id=row.id,
        chat_id=row.chat_id,
        name=row.name,
        owner_id=row.owner_id,
        income_day=row.income_day,
        created_at=row.created_at,
    )


def _period(row: PeriodRow) -> Period:
    is_group = row.group_id is not None
    return Period(
        id=row.id,
        target_id=row.group_id if is_group else row.user_id,
        is_group=is_group,
        name=row.name,
        start_date=row.start_date,
        end_date=row.end_date,
        is_current=row.is_current,
    )


def _bucket(row: BucketRow) -> Bucket:
    return Bucket(
        id=row.id,
        budget_id=row.budget_id,
        name=row.name,
        description=row.description,
        category=row.category,
        amount=Decimal(str(row.amount)),
        icon=row.icon,
        is_system=row.is_system,
    )


def _budget(row: BudgetRow) -> Budget:
    return Budget(
        id=row.id,
        period_id=row.period_id,
        estimated_income=Decimal(str(row.estimated_income)),
        buckets=[_bucket(b) for b in row.buckets],
    )


def _transaction(row: TransactionRow) -> Transaction:
    is_group = row.group_id is not None
    return Transaction(
        id=row.id,
        target_id=row.group_id if is_group else row.user_id,
        is_group=is_group,
        user_id=row.user_id,
        period_id=row.period_id,
        category_id=row.category_id,
        category=row.category.name if row.category else None,
        bucket=row.bucket,
        type=row.type,
        amount=Decimal(str(row.amount)),
        description=row.description,
        confidence=row.confidence,
        raw_message=row.raw_message,
        created_at=row.created_at,
    )


def _bucket_row(budget_id: UUID, draft: BucketDraft, position: int) -> BucketRow:
    return BucketRow(
        id=uuid4(),
        budget_id=budget_id,
        name=draft.name,
        description=draft.description,
        category=draft.category,
        amount=draft.amount,
        icon=draft.icon,
        is_system=draft.is_system,
        position=position,
    )


class SqlLedgerStorage(LedgerStorageInterface):
    """
    Ledger storage backed by SQLAlchemy.

    Usage:
        storage = SqlLedgerStorage()            # engine from settings
        storage = SqlLedgerStorage(engine)      # explicit engine (tests)
        storage.create_schema()
    """

    def __init__(self, engine: Optional[Engine] = None):
        if engine is None:
            db = get_settings().database
            engine = build_engine(db.url, echo=db.echo)
        self._engine = engine
        self._factory = build_session_factory(engine)

    @retry(
        retry=retry_if_exception_type(ConnectionError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def create_schema(self) -> None:
        """Create missing tables. Retries while the database comes up."""
        try:
            Base.metadata.create_all(self._engine)
        except OperationalError as e:
            raise ConnectionError(f"Failed to connect to database: {e}") from e

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with session_scope(self._factory) as session:
                yield session
        except IntegrityError as e:
            raise DuplicateError(f"Constraint violated: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Database operation failed: {e}") from e

    # =========================================================================
    # USERS AND GROUPS
    # =========================================================================

    async def get_user_by_external_id(self, external_id: int) -> Optional[UserAccount]:
        with self._session() as session:
            row = session.scalar(select(UserRow).where(UserRow.external_id == external_id))
            return _user(row) if row else None

    async def create_user(
        self,
        external_id: int,
        display_name: Optional[str],
        tier: UserTier,
    ) -> UserAccount:
        with self._session() as session:
            row = UserRow(id=uuid4(), external_id=external_id, display_name=display_name, tier=tier)
            session.add(row)
            session.flush()
            return _user(row)

    async def set_income_day(self, target: Target, income_day: int) -> None:
        table = GroupRow if target.is_group else UserRow
        with self._session() as session:
            session.execute(
                update(table).where(table.id == target.target_id).values(income_day=income_day)
            )

    async def get_group_by_chat_id(self, chat_id: int) -> Optional[Group]:
        with self._session() as session:
            row = session.scalar(select(GroupRow).where(GroupRow.chat_id == chat_id))
            return _group(row) if row else None

    async def create_group(self, chat_id: int, name: str, owner_id: UUID) -> Group:
        with self._session() as session:
            row = GroupRow(id=uuid4(), chat_id=chat_id, name=name, owner_id=owner_id)
            session.add(row)
            session.flush()
            session.add(GroupMemberRow(group_id=row.id, user_id=owner_id, role=MemberRole.OWNER))
            session.flush()
            return _group(row)

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        with self._session() as session:
            row = session.get(GroupRow, group_id)
            return _group(row) if row else None

    async def get_member_role(self, group_id: UUID, user_id: UUID) -> Optional[MemberRole]:
        with self._session() as session:
            return session.scalar(
                select(GroupMemberRow.role).where(
                    GroupMemberRow.group_id == group_id,
                    GroupMemberRow.user_id == user_id,
                )
            )

    async def add_group_member(
        self,
        group_id: UUID,
        user_id: UUID,
        role: MemberRole = MemberRole.MEMBER,
    ) -> None:
        with self._session() as session:
            session.add(GroupMemberRow(group_id=group_id, user_id=user_id, role=role))
            session.flush()

    # =========================================================================
    # PERIODS
    # =========================================================================

    async def get_current_period(self, target: Target) -> Optional[Period]:
        with self._session() as session:
            row = session.scalar(
                select(PeriodRow)
                .where(PeriodRow.scope_key == _scope_key(target), PeriodRow.is_current.is_(True))
                .order_by(PeriodRow.start_date.desc())
            )
            return _period(row) if row else None

    async def get_period_by_name(self, target: Target, name: str) -> Optional[Period]:
        with self._session() as session:
            row = session.scalar(
                select(PeriodRow).where(
                    PeriodRow.scope_key == _scope_key(target),
                    PeriodRow.name == name,
                )
            )
            return _period(row) if row else None

    async def create_current_period(
        self,
        target: Target,
        name: str,
        start_date: date,
        end_date: date,
    ) -> Period:
        scope = _scope_key(target)
        with self._session() as session:
            session.execute(
                update(PeriodRow)
                .where(PeriodRow.scope_key == scope, PeriodRow.is_current.is_(True))
                .values(is_current=False)
            )
            row = PeriodRow(
                id=uuid4(),
                scope_key=scope,
                name=name,
                start_date=start_date,
                end_date=end_date,
                is_current=True,
                **_owner_columns(target),
            )
            session.add(row)
            session.flush()
            return _period(row)

    async def set_current_period(self, target: Target, period_id: UUID) -> None:
        scope = _scope_key(target)
        with self._session() as session:
            session.execute(
                update(PeriodRow)
                .where(PeriodRow.scope_key == scope, PeriodRow.id != period_id)
                .values(is_current=False)
            )
            result = session.execute(
                update(PeriodRow)
                .where(PeriodRow.scope_key == scope, PeriodRow.id == period_id)
                .values(is_current=True)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Period not found: {period_id}")

    # =========================================================================
    # BUDGETS AND BUCKETS
    # =========================================================================

    def _load_budget(self, session: Session, budget_id: UUID) -> BudgetRow:
        row = session.scalar(
            select(BudgetRow)
            .where(BudgetRow.id == budget_id)
            .options(selectinload(BudgetRow.buckets))
        )
        if row is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return row

    async def get_budget(self, period_id: UUID) -> Optional[Budget]:
        with self._session() as session:
            row = session.scalar(
                select(BudgetRow)
                .where(BudgetRow.period_id == period_id)
                .options(selectinload(BudgetRow.buckets))
            )
            return _budget(row) if row else None

    async def create_budget(
        self,
        period_id: UUID,
        estimated_income: Decimal,
        buckets: list[BucketDraft],
    ) -> Budget:
        with self._session() as session:
            row = BudgetRow(id=uuid4(), period_id=period_id, estimated_income=estimated_income)
            session.add(row)
            for position, draft in enumerate(buckets):
                row.buckets.append(_bucket_row(row.id, draft, position))
            session.flush()
            return _budget(row)

    async def replace_buckets(
        self,
        budget_id: UUID,
        estimated_income: Decimal,
        buckets: list[BucketDraft],
    ) -> Budget:
        with self._session() as session:
            row = self._load_budget(session, budget_id)
            row.estimated_income = estimated_income
            row.buckets.clear()
            session.flush()
            for position, draft in enumerate(buckets):
                row.buckets.append(_bucket_row(row.id, draft, position))
            session.flush()
            return _budget(row)

    async def add_bucket(self, budget_id: UUID, bucket: BucketDraft) -> Bucket:
        with self._session() as session:
            budget = self._load_budget(session, budget_id)
            row = _bucket_row(budget_id, bucket, len(budget.buckets))
            session.add(row)
            session.flush()
            return _bucket(row)

    async def update_bucket(
        self,
        bucket: Bucket,
        period_id: UUID,
        previous_name: Optional[str] = None,
    ) -> Bucket:
        with self._session() as session:
            row = session.get(BucketRow, bucket.id)
            if row is None:
                raise NotFoundError(f"Bucket not found: {bucket.id}")
            row.name = bucket.name
            row.description = bucket.description
            row.category = bucket.category
            row.amount = bucket.amount
            row.icon = bucket.icon
            if previous_name is not None and previous_name != bucket.name:
                moved = session.execute(
                    update(TransactionRow)
                    .where(TransactionRow.period_id == period_id, TransactionRow.bucket == previous_name)
                    .values(bucket=bucket.name)
                ).rowcount
                logger.info(
                    "bucket_renamed",
                    bucket_id=str(bucket.id),
                    old=previous_name,
                    new=bucket.name,
                    transactions=moved,
                )
            session.flush()
            return _bucket(row)

    async def delete_bucket(
        self,
        bucket_id: UUID,
        period_id: UUID,
        bucket_name: str,
        move_to: str,
    ) -> int:
        with self._session() as session:
            row = session.get(BucketRow, bucket_id)
            if row is None:
                raise NotFoundError(f"Bucket not found: {bucket_id}")
            moved = session.execute(
                update(TransactionRow)
                .where(TransactionRow.period_id == period_id, TransactionRow.bucket == bucket_name)
                .values(bucket=move_to)
            ).rowcount
            session.delete(row)
            return moved

    # =========================================================================
    # CATEGORIES AND TRANSACTIONS
    # =========================================================================

    def _find_or_create_category(self, session: Session, target: Target, name: str) -> CategoryRow:
        scope = _scope_key(target)
        key = name.strip().casefold()
        row = session.scalar(
            select(CategoryRow).where(CategoryRow.scope_key == scope, CategoryRow.name_key == key)
        )
        if row is None:
            row = CategoryRow(
                id=uuid4(),
                scope_key=scope,
                name=name.strip(),
                name_key=key,
                **_owner_columns(target),
            )
            session.add(row)
            session.flush()
        return row

    async def find_category(self, target: Target, name: str) -> Optional[Category]:
        with self._session() as session:
            row = session.scalar(
                select(CategoryRow).where(
                    CategoryRow.scope_key == _scope_key(target),
                    CategoryRow.name_key == name.strip().casefold(),
                )
            )
            if row is None:
                return None
            return Category(id=row.id, target_id=target.target_id, is_group=target.is_group, name=row.name)

    async def save_transactions(
        self,
        target: Target,
        period_id: UUID,
        drafts: list[TransactionDraft],
    ) -> list[UUID]:
        scope = _scope_key(target)
        ids: list[UUID] = []
        with self._session() as session:
            categories: dict[str, CategoryRow] = {}
            for draft in drafts:
                key = draft.category.strip().casefold()
                if key not in categories:
                    categories[key] = self._find_or_create_category(session, target, draft.category)
                category = categories[key]

                if draft.transaction_id is not None:
                    row = session.get(TransactionRow, draft.transaction_id)
                    if row is None or row.scope_key != scope:
                        raise NotFoundError(f"Transaction not found: {draft.transaction_id}")
                else:
                    row = TransactionRow(
                        id=uuid4(),
                        scope_key=scope,
                        user_id=target.user_id,
                        group_id=target.group_id if target.is_group else None,
                        period_id=period_id,
                        raw_message=draft.raw_message,
                    )
                    session.add(row)

                row.category_id = category.id
                row.bucket = draft.bucket
                row.type = draft.type
                row.amount = draft.amount
                row.description = draft.description
                row.confidence = draft.confidence
                ids.append(row.id)
            session.flush()
        return ids

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        with self._session() as session:
            row = session.get(TransactionRow, transaction_id)
            return _transaction(row) if row else None

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        with self._session() as session:
            row = session.get(TransactionRow, transaction_id)
            if row is None:
                return False
            session.delete(row)
            return True

    async def list_transactions(
        self,
        target: Target,
        period_id: UUID,
        limit: int = 20,
        bucket: Optional[str] = None,
        type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        query = select(TransactionRow).where(
            TransactionRow.scope_key == _scope_key(target),
            TransactionRow.period_id == period_id,
        )
        if bucket:
            query = query.where(func.lower(TransactionRow.bucket) == bucket.lower())
        if type:
            query = query.where(TransactionRow.type == type)
        query = query.order_by(TransactionRow.created_at.desc()).limit(limit)

        with self._session() as session:
            return [_transaction(row) for row in session.scalars(query).unique()]

    async def sum_by_bucket(
        self,
        target: Target,
        period_id: UUID,
        type: TransactionType = TransactionType.EXPENSE,
    ) -> dict[Optional[str], Decimal]:
        query = (
            select(TransactionRow.bucket, func.sum(TransactionRow.amount))
            .where(
                TransactionRow.scope_key == _scope_key(target),
                TransactionRow.period_id == period_id,
                TransactionRow.type == type,
            )
            .group_by(TransactionRow.bucket)
        )
        with self._session() as session:
            return {name: Decimal(str(total)) for name, total in session.execute(query)}

    async def sum_by_category(
        self,
        target: Target,
        period_id: UUID,
        type: TransactionType = TransactionType.EXPENSE,
    ) -> dict[str, Decimal]:
        query = (
            select(CategoryRow.name, func.sum(TransactionRow.amount))
            .select_from(TransactionRow)
            .outerjoin(CategoryRow, TransactionRow.category_id == CategoryRow.id)
            .where(
                TransactionRow.scope_key == _scope_key(target),
                TransactionRow.period_id == period_id,
                TransactionRow.type == type,
            )
            .group_by(CategoryRow.name)
        )
        with self._session() as session:
            return {
                (name or "Uncategorized"): Decimal(str(total))
                for name, total in session.execute(query)
            }

    # =========================================================================
    # CONTEXT SUMMARIES
    # =========================================================================

    async def get_context_summary(self, target_id: UUID) -> str:
        with self._session() as session:
            row = session.get(ContextSummaryRow, target_id)
            return row.summary if row else ""

    async def save_context_summary(self, target_id: UUID, summary: str) -> None:
        with self._session() as session:
            row = session.get(ContextSummaryRow, target_id)
            if row is None:
                session.add(ContextSummaryRow(target_id=target_id, summary=summary))
            else:
                row.summary = summary
