from .base import BaseSchema, envelope
from .messages import DispatchMessage, DoneEvent, MESSAGE_VERSION, done_routing_key

__all__ = [
    "BaseSchema",
    "envelope",
    "DispatchMessage",
    "DoneEvent",
    "MESSAGE_VERSION",
    "done_routing_key",
]
