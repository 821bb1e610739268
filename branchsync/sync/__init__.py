"""Commit construction from selected diff entries."""

from branchsync.sync.models import CommitPlan, CommitResult, PlanEntry
from branchsync.sync.planner import SyncPlanner

__all__ = ["CommitPlan", "CommitResult", "PlanEntry", "SyncPlanner"]
