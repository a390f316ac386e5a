"""Language-model agents: transaction parsing, context summaries, conversation."""

from chatledger.agents.conversation_agent import (
    FALLBACK_REPLY,
    AgentReply,
    ConversationAgent,
)
from chatledger.agents.summarizer import ContextSummarizer, SummaryFailure
from chatledger.agents.transaction_parser import ParseFailure, TransactionParser

__all__ = [
    "AgentReply",
    "ContextSummarizer",
    "ConversationAgent",
    "FALLBACK_REPLY",
    "ParseFailure",
    "SummaryFailure",
    "TransactionParser",
]
