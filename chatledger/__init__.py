"""
Chat Ledger - Source Package

A conversational ledger: people (or family groups) record transactions
by chatting, and spending is tracked against budget buckets for a
rolling income period.

DESIGN PRINCIPLES:
1. AI parses -> confidence gate decides -> human confirms when unsure
2. One pending batch per target, never queued
3. Conversation context is summarized, never silently dropped
4. Every step must be auditable
5. Storage, cache and model backends are swappable
"""

__version__ = "1.0.0"
__author__ = "Chat Ledger Team"
