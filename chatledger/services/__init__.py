"""
External Services Package

Persistence, the expiring key-value store and the language model.
Each has an abstract interface and a concrete implementation.
"""
