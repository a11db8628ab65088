"""Conversation membership and message search services."""

__version__ = "0.1.0"
