"""
Tool Dispatcher

Executes tool calls requested by the language model. Dispatch goes
through a table keyed by ToolName; a name outside the table is answered
with a structured error, never an exception.

CRITICAL BOUNDARIES:
- Arguments are validated with the pydantic models in
  chatledger.models.tools before anything runs
- Domain errors (low confidence, missing bucket, bad amount) become
  ToolResult.fail so the model can explain them to the user
- Storage failures are logged with the target and period, and the model
  only sees a generic error
"""

from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, ValidationError

from chatledger.audit import AuditLogger
from chatledger.budget import BudgetEngine, BudgetError
from chatledger.config import LedgerSettings, get_settings
from chatledger.ledger import InvalidAmount, Ledger, LowToolConfidence, UndoLog
from chatledger.models.audit import AuditEventBuilder
from chatledger.models.conversation import SessionState, ToolCall
from chatledger.models.ledger import Period, Target
from chatledger.models.tools import (
    DeleteBucketArgs,
    DeleteTransactionArgs,
    GetBudgetStatusArgs,
    GetTransactionHistoryArgs,
    ToolName,
    ToolResult,
    UpsertBucketArgs,
    UpsertPeriodArgs,
    UpsertTransactionArgs,
)
from chatledger.periods import PeriodError, PeriodResolver
from chatledger.services.storage import NotFoundError, StorageError


logger = structlog.get_logger(__name__)


class ToolContext(BaseModel):
    """Who the call acts for; period is replaced when upsertPeriod switches it."""

    target: Target
    period: Period
    state: SessionState


class ToolDispatcher:
    """
    Runs one tool call against the ledger and budget.

    Usage:
        dispatcher = ToolDispatcher(ledger, undo_log, budget_engine, period_resolver)
        result = await dispatcher.dispatch(call, ToolContext(target=t, period=p, state=s))
    """

    def __init__(
        self,
        ledger: Ledger,
        undo_log: UndoLog,
        budget_engine: BudgetEngine,
        period_resolver: PeriodResolver,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._ledger = ledger
        self._undo = undo_log
        self._budget = budget_engine
        self._periods = period_resolver
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger
        self._handlers: dict[ToolName, Callable[[dict, ToolContext], Awaitable[ToolResult]]] = {
            ToolName.UPSERT_TRANSACTION: self._upsert_transaction,
            ToolName.DELETE_TRANSACTION: self._delete_transaction,
            ToolName.UPSERT_BUCKET: self._upsert_bucket,
            ToolName.DELETE_BUCKET: self._delete_bucket,
            ToolName.UPSERT_PERIOD: self._upsert_period,
            ToolName.GET_BUDGET_STATUS: self._get_budget_status,
            ToolName.GET_TRANSACTION_HISTORY: self._get_transaction_history,
        }

    async def dispatch(self, call: ToolCall, context: ToolContext) -> ToolResult:
        try:
            handler = self._handlers[ToolName(call.name)]
        except ValueError:
            result = ToolResult.fail(f"Unknown tool: {call.name}")
        else:
            result = await self._run(handler, call, context)

        logger.info(
            "tool_executed",
            tool=call.name,
            target_id=str(context.target.target_id),
            success=result.success,
            error=result.error,
        )
        if self._audit:
            await self._audit.log(AuditEventBuilder.tool_executed(
                context.target.target_id, call.name, result.success, result.error
            ))
        return result

    async def _run(self, handler, call: ToolCall, context: ToolContext) -> ToolResult:
        try:
            return await handler(call.arguments, context)
        except ValidationError as e:
            return ToolResult.fail(f"Invalid arguments for {call.name}: {e.errors()[0]['msg']}")
        except LowToolConfidence as e:
            data = {"confirmationMessage": e.confirmation_message} if e.confirmation_message else None
            return ToolResult.fail(f"Needs user confirmation: {e}", data=data)
        except InvalidAmount as e:
            return ToolResult.fail(str(e))
        except NotFoundError as e:
            return ToolResult.fail(str(e))
        except (BudgetError, PeriodError) as e:
            return ToolResult.fail(str(e))
        except StorageError as e:
            logger.error(
                "tool_persistence_failed",
                tool=call.name,
                target_id=str(context.target.target_id),
                period_id=str(context.period.id),
                arguments=call.arguments,
                error=str(e),
            )
            if self._audit:
                await self._audit.log_persistence_failed(
                    context.target.target_id, context.period.id, f"{call.name} {call.arguments}", str(e)
                )
            return ToolResult.fail("Could not save the change, please try again later")

    # =========================================================================
    # WRITE TOOLS
    # =========================================================================

    async def _upsert_transaction(self, arguments: dict, context: ToolContext) -> ToolResult:
        args = UpsertTransactionArgs.model_validate(arguments)
        ids = await self._ledger.bulk_upsert(context.target, context.period, args.input)

        # Undo covers the rows this call created, not the ones it edited
        created = [tid for tid, item in zip(ids, args.input) if item.transaction_id is None]
        if created:
            self._undo.record(context.state, created)
        return ToolResult.ok(
            f"Saved {len(ids)} transaction(s)",
            data={"transactionIds": [str(i) for i in ids]},
        )

    async def _delete_transaction(self, arguments: dict, context: ToolContext) -> ToolResult:
        args = DeleteTransactionArgs.model_validate(arguments)
        if not await self._ledger.delete(args.transaction_id, context.target):
            return ToolResult.fail(f"Transaction not found: {args.transaction_id}")
        context.state.undo_ids = [i for i in context.state.undo_ids if i != args.transaction_id]
        return ToolResult.ok("Transaction deleted")

    async def _upsert_bucket(self, arguments: dict, context: ToolContext) -> ToolResult:
        args = UpsertBucketArgs.model_validate(arguments)
        bucket = await self._budget.upsert_bucket(
            context.period,
            name=args.name,
            amount=args.amount,
            description=args.description,
            category=args.category,
            bucket_id=args.bucket_id,
        )
        return ToolResult.ok(
            f"Bucket {bucket.name} saved",
            data={"bucketId": str(bucket.id), "name": bucket.name, "amount": str(bucket.amount)},
        )

    async def _delete_bucket(self, arguments: dict, context: ToolContext) -> ToolResult:
        args = DeleteBucketArgs.model_validate(arguments)
        threshold = self._settings.tool_min_confidence
        if args.confidence < threshold:
            raise LowToolConfidence(
                f"confidence {args.confidence:.2f} is below {threshold:.2f}",
                confirmation_message=args.confirmation_message,
            )
        moved = await self._budget.delete_bucket(context.period, args.name, args.move_bucket)
        return ToolResult.ok(
            f"Bucket {args.name} deleted, {moved} transaction(s) moved to {args.move_bucket}",
            data={"moved": moved},
        )

    async def _upsert_period(self, arguments: dict, context: ToolContext) -> ToolResult:
        args = UpsertPeriodArgs.model_validate(arguments)
        period = await self._periods.start_period(
            context.target,
            income_day=args.income_date,
            name=args.name,
            copy_from_previous=args.copy_from_previous,
        )
        context.period = period
        return ToolResult.ok(
            f"Active period is {period.name}",
            data={
                "periodId": str(period.id),
                "name": period.name,
                "start": period.start_date.isoformat(),
                "end": period.end_date.isoformat(),
            },
        )

    # =========================================================================
    # READ TOOLS
    # =========================================================================

    async def _get_budget_status(self, arguments: dict, context: ToolContext) -> ToolResult:
        args = GetBudgetStatusArgs.model_validate(arguments)
        summary = await self._budget.summarize(context.target, context.period)

        buckets = summary.buckets
        if args.bucket_name:
            match = summary.bucket(args.bucket_name)
            if match is None:
                return ToolResult.fail(f"No bucket named {args.bucket_name!r}")
            buckets = [match]

        return ToolResult.ok(
            f"Budget status for {summary.period_name}",
            data={
                "period": summary.period_name,
                "income": str(summary.income),
                "totalSpent": str(summary.total_spent),
                "buckets": [
                    {
                        "name": b.name,
                        "allocated": str(b.allocated),
                        "spent": str(b.spent),
                        "remaining": str(b.remaining),
                    }
                    for b in buckets
                ],
            },
        )

    async def _get_transaction_history(self, arguments: dict, context: ToolContext) -> ToolResult:
        args = GetTransactionHistoryArgs.model_validate(arguments)
        rows = await self._ledger.history(
            context.target, context.period, limit=args.limit, bucket=args.bucket, type=args.type
        )
        return ToolResult.ok(
            f"{len(rows)} transaction(s)",
            data={
                "transactions": [
                    {
                        "id": str(t.id),
                        "type": t.type.value,
                        "amount": str(t.amount),
                        "category": t.category,
                        "bucket": t.bucket,
                        "description": t.description,
                        "createdAt": t.created_at.isoformat(),
                    }
                    for t in rows
                ]
            },
        )
