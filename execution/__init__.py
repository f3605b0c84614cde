# PATH: execution/__init__.py
"""
HEAVENBOT execution layer.

- state_machine: position and bundle lifecycles
- submission: retry and confirmation policies, TransactionSubmitter
- executor: direct (unbundled) execution
- positions: Position Lifecycle Manager
- bundler: Bundle Engine
"""

from execution.bundler import BundleEngine, SubmitTrigger, compute_priority_fee, submission_trigger
from execution.executor import DirectExecutor, ExecutionOutcome, ExecutionResult
from execution.positions import PositionManager, exit_reason
from execution.state_machine import (
    BUNDLE_TRANSITIONS,
    POSITION_TRANSITIONS,
    StateTransition,
    advance_bundle,
    advance_position,
)
from execution.submission import (
    ConfirmationPolicy,
    RetryPolicy,
    TransactionSubmitter,
    await_confirmation,
    submit_with_retry,
)

__all__ = [
    # State machine
    "BUNDLE_TRANSITIONS",
    "POSITION_TRANSITIONS",
    "StateTransition",
    "advance_bundle",
    "advance_position",
    # Submission
    "ConfirmationPolicy",
    "RetryPolicy",
    "TransactionSubmitter",
    "await_confirmation",
    "submit_with_retry",
    # Executors
    "DirectExecutor",
    "ExecutionOutcome",
    "ExecutionResult",
    # Lifecycle
    "PositionManager",
    "exit_reason",
    # Bundling
    "BundleEngine",
    "SubmitTrigger",
    "compute_priority_fee",
    "submission_trigger",
]
