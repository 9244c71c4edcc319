"""Operator input routing."""

from .router import NEXT_TARGET, WaitingEntry, WaitingInputRouter, parse_inline_reply

__all__ = ["NEXT_TARGET", "WaitingEntry", "WaitingInputRouter", "parse_inline_reply"]
