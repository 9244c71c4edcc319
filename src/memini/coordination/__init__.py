"""Coordination group aggregation."""

from .aggregator import Aggregator, CoordinationGroup, GroupResult, MemberOutcome, synthesize

__all__ = ["Aggregator", "CoordinationGroup", "GroupResult", "MemberOutcome", "synthesize"]
