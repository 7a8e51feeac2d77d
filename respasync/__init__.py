"""Event-loop agnostic asynchronous RESP client core: hash table, callbacks and context."""

__version__ = "0.1.0"
__all__ = ["hashtable", "callbacks", "context"]