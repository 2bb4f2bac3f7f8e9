"""Pure state machines for TRA documents and LMRA sessions."""

from .lmra import LMRAExecutionStateMachine, append_absent, merge_items
from .tra import TRALifecycleStateMachine, add_months

__all__ = [
    "LMRAExecutionStateMachine",
    "TRALifecycleStateMachine",
    "add_months",
    "append_absent",
    "merge_items",
]
