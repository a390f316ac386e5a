"""
Tool Declarations

Function declarations offered to the language model. Parameter names
are the camelCase aliases of the argument models in
chatledger.models.tools; those models are the authority on validation,
these schemas only tell the model what to send.
"""

from typing import Any

from chatledger.models.tools import ToolName


_TRANSACTION_ITEM = {
    "type": "object",
    "properties": {
        "transactionId": {"type": "string", "description": "Set to update an existing transaction"},
        "type": {"type": "string", "enum": ["income", "expense", "transfer", "adjustment"]},
        "amount": {"type": "number"},
        "category": {"type": "string"},
        "bucket": {"type": "string"},
        "description": {"type": "string"},
        "confidence": {"type": "number", "description": "0 to 1"},
        "confirmationMessage": {
            "type": "string",
            "description": "Question for the user; required when confidence is below 0.8",
        },
    },
    "required": ["type", "amount", "confidence"],
}


TOOL_DECLARATIONS: dict[ToolName, dict[str, Any]] = {
    ToolName.UPSERT_TRANSACTION: {
        "name": ToolName.UPSERT_TRANSACTION.value,
        "description": "Create transactions, or update them when transactionId is given.",
        "parameters": {
            "type": "object",
            "properties": {"input": {"type": "array", "items": _TRANSACTION_ITEM}},
            "required": ["input"],
        },
    },
    ToolName.DELETE_TRANSACTION: {
        "name": ToolName.DELETE_TRANSACTION.value,
        "description": "Delete one transaction by id.",
        "parameters": {
            "type": "object",
            "properties": {"transactionId": {"type": "string"}},
            "required": ["transactionId"],
        },
    },
    ToolName.UPSERT_BUCKET: {
        "name": ToolName.UPSERT_BUCKET.value,
        "description": "Create a bucket, or update one (by bucketId or name). Renaming relabels its transactions.",
        "parameters": {
            "type": "object",
            "properties": {
                "bucketId": {"type": "string"},
                "name": {"type": "string"},
                "description": {"type": "string"},
                "amount": {"type": "number"},
                "category": {"type": "string", "enum": ["needs", "wants", "savings"]},
            },
            "required": ["name", "amount"],
        },
    },
    ToolName.DELETE_BUCKET: {
        "name": ToolName.DELETE_BUCKET.value,
        "description": "Delete a bucket and move its transactions to another bucket.",
        "parameters": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "moveBucket": {"type": "string", "description": "Bucket that receives the transactions"},
                "confidence": {"type": "number"},
                "confirmationMessage": {"type": "string"},
            },
            "required": ["name", "moveBucket", "confidence"],
        },
    },
    ToolName.UPSERT_PERIOD: {
        "name": ToolName.UPSERT_PERIOD.value,
        "description": "Start or switch to the period containing today; optionally change the income day.",
        "parameters": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "incomeDate": {"type": "integer", "description": "Day of month income arrives (1-31)"},
                "copyFromPrevious": {"type": "boolean"},
            },
        },
    },
    ToolName.GET_BUDGET_STATUS: {
        "name": ToolName.GET_BUDGET_STATUS.value,
        "description": "Allocated, spent and remaining per bucket for the active period.",
        "parameters": {
            "type": "object",
            "properties": {"bucketName": {"type": "string", "description": "Limit to one bucket"}},
        },
    },
    ToolName.GET_TRANSACTION_HISTORY: {
        "name": ToolName.GET_TRANSACTION_HISTORY.value,
        "description": "Most recent transactions of the active period.",
        "parameters": {
            "type": "object",
            "properties": {
                "limit": {"type": "integer"},
                "bucket": {"type": "string"},
                "type": {"type": "string", "enum": ["income", "expense", "transfer", "adjustment"]},
            },
        },
    },
}


def tool_declarations() -> list[dict[str, Any]]:
    return list(TOOL_DECLARATIONS.values())
