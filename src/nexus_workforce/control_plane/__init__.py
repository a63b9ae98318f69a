"""Control-plane public API."""

from nexus_workforce.control_plane.budgets import BudgetAction, BudgetDecision, BudgetTracker
from nexus_workforce.control_plane.controller import (
    ProjectCloseReport,
    ProjectHandle,
    TaskRunResult,
    WorkforceController,
)
from nexus_workforce.control_plane.dispatcher import (
    Assignment,
    DispatchResult,
    DispatchViolation,
    TaskDispatcher,
)
from nexus_workforce.control_plane.gates import (
    ApprovalGateController,
    GateWaitResult,
    WaitOutcome,
)
from nexus_workforce.control_plane.lifecycle import (
    RescaleResult,
    RetirementOutcome,
    WorkerLifecycleManager,
)
from nexus_workforce.control_plane.sizing import (
    SizingReport,
    SizingRules,
    WorkloadSizer,
    estimate_cost,
)
from nexus_workforce.control_plane.verification import (
    AttemptContext,
    GenerationResult,
    Verdict,
    VerificationOutcome,
    VerifiedExecutionLoop,
)

__all__ = [
    "ApprovalGateController",
    "Assignment",
    "AttemptContext",
    "BudgetAction",
    "BudgetDecision",
    "BudgetTracker",
    "DispatchResult",
    "DispatchViolation",
    "GateWaitResult",
    "GenerationResult",
    "ProjectCloseReport",
    "ProjectHandle",
    "RescaleResult",
    "RetirementOutcome",
    "SizingReport",
    "SizingRules",
    "TaskDispatcher",
    "TaskRunResult",
    "Verdict",
    "VerificationOutcome",
    "VerifiedExecutionLoop",
    "WaitOutcome",
    "WorkerLifecycleManager",
    "WorkforceController",
    "WorkloadSizer",
    "estimate_cost",
]
