"""Conversation state: context window, sweeper, session state and onboarding."""

from chatledger.conversation.context_cache import (
    CONTEXT_KEY_PREFIX,
    ConversationContextCache,
    retained_tail,
)
from chatledger.conversation.onboarding import (
    ONBOARDING_CHOICE_PREFIX,
    OnboardingFlow,
    OnboardingReply,
    SplitChoice,
)
from chatledger.conversation.session_store import SESSION_KEY_PREFIX, SessionStore
from chatledger.conversation.sweeper import ContextSweeper

__all__ = [
    "CONTEXT_KEY_PREFIX",
    "ContextSweeper",
    "ConversationContextCache",
    "ONBOARDING_CHOICE_PREFIX",
    "OnboardingFlow",
    "OnboardingReply",
    "SESSION_KEY_PREFIX",
    "SessionStore",
    "SplitChoice",
    "retained_tail",
]
