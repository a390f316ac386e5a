"""Transaction ledger, confirmation gate and undo log."""

from chatledger.ledger.ledger import (
    InvalidAmount,
    Ledger,
    LedgerError,
    LowToolConfidence,
)
from chatledger.ledger.undo import UndoLog, UndoResult, UndoStatus
from chatledger.ledger.gate import (
    ConfirmationGate,
    GateDecision,
    GateOutcome,
)

__all__ = [
    "ConfirmationGate",
    "GateDecision",
    "GateOutcome",
    "InvalidAmount",
    "Ledger",
    "LedgerError",
    "LowToolConfidence",
    "UndoLog",
    "UndoResult",
    "UndoStatus",
]
