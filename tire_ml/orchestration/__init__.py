"""MLOps pipeline orchestration: phases, deployment and drift monitoring."""
from .event_log import EventLog
from .deployment import ModelServerProcess
from .orchestrator import (
    OrchestratorConfig,
    PhaseResult,
    PipelineOrchestrator,
    PipelinePhase,
    PipelineRunResult,
    PipelineState,
)

__all__ = [
    "EventLog",
    "ModelServerProcess",
    "OrchestratorConfig",
    "PhaseResult",
    "PipelineOrchestrator",
    "PipelinePhase",
    "PipelineRunResult",
    "PipelineState",
]
