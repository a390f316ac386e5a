"""Chat transport abstraction."""

from chatledger.transport.interface import (
    ChatTransportInterface,
    Choice,
    InboundChoice,
    InboundMessage,
    TransportError,
)

__all__ = [
    "ChatTransportInterface",
    "Choice",
    "InboundChoice",
    "InboundMessage",
    "TransportError",
]
