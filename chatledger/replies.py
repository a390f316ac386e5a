"""
Reply Rendering

Plain-text replies and the choice payloads attached to them. Choice
data is a short colon-separated string so it fits the callback limits
of chat clients:

    confirm:<batch_id>
    reject:<batch_id>
    amount:<batch_id>:<value>
    onboarding:<value>
    join:<group_id>
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import NamedTuple, Optional
from uuid import UUID

from chatledger.agents.prompts import FORMAT_EXAMPLES
from chatledger.amounts import format_amount
from chatledger.ledger import UndoResult, UndoStatus
from chatledger.models.conversation import PendingTransactionBatch
from chatledger.models.ledger import BudgetSummary, Group, TransactionCandidate, TransactionType
from chatledger.transport import Choice


HELP_TEXT = (
    "Just tell me what you spent or earned, e.g.:\n"
    + "\n".join(f"  {example}" for example in FORMAT_EXAMPLES)
    + "\n\nCommands:\n"
    "  /start - set up your budget\n"
    "  /summary - spending this period\n"
    "  /undo - remove the last saved transactions\n"
    "  /cancel - drop a pending confirmation or setup\n"
    "  /join_family - join this group's shared budget (send it in the group)\n"
    "  /help - this message"
)

GENERIC_ERROR_TEXT = "Sorry, something went wrong on my side. Please try again in a moment."
NO_PERIOD_TEXT = "You don't have an active budget period yet. Send /start to set one up."
NOTHING_PENDING_TEXT = "Nothing is waiting for confirmation."
NOT_REGISTERED_TEXT = "I don't know you yet. Send /start in a private chat to register."
GROUP_NOT_REGISTERED_TEXT = "This group isn't registered. The owner needs a family plan to use the bot here."
NOT_A_MEMBER_TEXT = "You're not a member of this group's budget. Send /join_family here to join."
JOIN_IN_GROUP_TEXT = "Send /join_family inside the group you want to join."
GROUP_NOT_FOUND_TEXT = "That family group doesn't exist. Ask someone in the group for a new invite."


# =============================================================================
# CHOICE PAYLOADS
# =============================================================================

class ChoiceAction(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    AMOUNT = "amount"
    ONBOARDING = "onboarding"
    JOIN = "join"


class DecodedChoice(NamedTuple):
    action: ChoiceAction
    batch_id: Optional[UUID]
    value: Optional[str]


def decode_choice(data: str) -> Optional[DecodedChoice]:
    """Parse choice data; None if it isn't one of ours."""
    head, _, rest = data.partition(":")
    try:
        action = ChoiceAction(head)
    except ValueError:
        return None

    if action in (ChoiceAction.ONBOARDING, ChoiceAction.JOIN):
        return DecodedChoice(action, None, rest or None)

    raw_id, _, value = rest.partition(":")
    try:
        batch_id = UUID(raw_id)
    except ValueError:
        return None
    return DecodedChoice(action, batch_id, value or None)


def parse_choice_amount(value: Optional[str]) -> Optional[Decimal]:
    if not value:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        return None


def confirm_choices(batch: PendingTransactionBatch) -> list[Choice]:
    return [
        Choice(label="Save", data=f"{ChoiceAction.CONFIRM.value}:{batch.batch_id}"),
        Choice(label="Discard", data=f"{ChoiceAction.REJECT.value}:{batch.batch_id}"),
    ]


def amount_choices(batch: PendingTransactionBatch) -> list[Choice]:
    choices = [
        Choice(label=format_amount(amount), data=f"{ChoiceAction.AMOUNT.value}:{batch.batch_id}:{amount}")
        for amount in batch.amount_choices
    ]
    choices.append(Choice(label="Discard", data=f"{ChoiceAction.REJECT.value}:{batch.batch_id}"))
    return choices


def join_choices(group: Group) -> list[Choice]:
    return [Choice(label="Join", data=f"{ChoiceAction.JOIN.value}:{group.id}")]


# =============================================================================
# TEXT
# =============================================================================

def candidate_line(candidate: TransactionCandidate) -> str:
    sign = "+" if candidate.type == TransactionType.INCOME else "-"
    label = candidate.description or candidate.category
    where = f"{candidate.category}" + (f", {candidate.bucket}" if candidate.bucket else "")
    return f"{sign}{format_amount(candidate.amount)} {label} ({where})"


def committed_text(candidates: list[TransactionCandidate], summary: Optional[BudgetSummary] = None) -> str:
    lines = ["Saved:"] + [f"  {candidate_line(c)}" for c in candidates]
    if summary is not None:
        touched = {c.bucket.casefold() for c in candidates if c.bucket}
        for bucket in summary.buckets:
            if bucket.name.casefold() not in touched:
                continue
            status = "over by" if bucket.is_over else "left"
            lines.append(f"{bucket.name}: {format_amount(abs(bucket.remaining))} {status}")
    lines.append("Send /undo to take it back.")
    return "\n".join(lines)


def pending_text(batch: PendingTransactionBatch) -> str:
    lines = ["Please check before I save:"] + [f"  {candidate_line(c)}" for c in batch.candidates]
    return "\n".join(lines)


def amount_choice_text(batch: PendingTransactionBatch) -> str:
    candidate = batch.candidates[0]
    label = candidate.description or candidate.category
    return f"How much was {label}?"


def rejected_text() -> str:
    return "Discarded, nothing was saved."


def superseded_text() -> str:
    return "Replaced by a newer message."


def parse_failure_text() -> str:
    examples = "\n".join(f"  {example}" for example in FORMAT_EXAMPLES)
    return f"I couldn't read that. Try a format like:\n{examples}"


def summary_text(summary: BudgetSummary) -> str:
    lines = [
        f"{summary.period_name}",
        f"Income: {format_amount(summary.income)}",
        f"Spent: {format_amount(summary.total_spent)}",
    ]
    for bucket in summary.buckets:
        lines.append(
            f"  {bucket.name}: {format_amount(bucket.spent)} / {format_amount(bucket.allocated)}"
            f" ({format_amount(bucket.remaining)} left)"
        )
    if summary.unassigned_spent:
        lines.append(f"  Not in any bucket: {format_amount(summary.unassigned_spent)}")
    if summary.top_categories:
        lines.append("Top categories:")
        for share in summary.top_categories:
            lines.append(f"  {share.name}: {format_amount(share.amount)} ({share.share:.0%})")
    return "\n".join(lines)


def undo_text(result: UndoResult) -> str:
    if result.status == UndoStatus.NOTHING:
        return "Nothing to undo."
    if result.status == UndoStatus.FULL:
        return f"Undone: {len(result.deleted)} transaction(s) removed."
    if result.status == UndoStatus.PARTIAL:
        return (
            f"Partly undone: {len(result.deleted)} removed, "
            f"{len(result.missing)} were already gone."
        )
    return "Nothing was undone; those transactions were already gone."




def join_invite_text(group: Group) -> str:
    return (
        f"Tap Join to record in {group.name}'s budget, "
        f"or send me /start join_{group.id} in a private chat."
    )


def joined_text(group: Group, joined: bool) -> str:
    if not joined:
        return f"You're already a member of {group.name}."
    return f"You joined {group.name}. Log transactions right in the group chat."
