"""Reconciliation engine: planning, applying, state and providers."""

from cairn.engine.provider import Provider
from cairn.engine.local import LocalCloudProvider
from cairn.engine.state import (
    ResourceState,
    StateSnapshot,
    StateBackend,
    MemoryStateBackend,
    LocalStateBackend,
)
from cairn.engine.plan import Change, ChangeAction, Plan, Planner
from cairn.engine.reconciler import ApplyResult, Reconciler

__all__ = [
    "Provider",
    "LocalCloudProvider",
    "ResourceState",
    "StateSnapshot",
    "StateBackend",
    "MemoryStateBackend",
    "LocalStateBackend",
    "Change",
    "ChangeAction",
    "Plan",
    "Planner",
    "ApplyResult",
    "Reconciler",
]
