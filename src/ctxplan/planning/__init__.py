"""Budget allocation, layered loading and the planner entry point."""

from ctxplan.planning.allocator import AllocationState, BudgetAllocator
from ctxplan.planning.loader import HierarchicalLoader
from ctxplan.planning.planner import ContextPlanner, loading_strategy_for
from ctxplan.planning.registry import ProviderCapability, ProviderCapabilityRegistry

__all__ = [
    "AllocationState",
    "BudgetAllocator",
    "ContextPlanner",
    "HierarchicalLoader",
    "ProviderCapability",
    "ProviderCapabilityRegistry",
    "loading_strategy_for",
]
