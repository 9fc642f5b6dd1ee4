"""Pipeline Bounded Context.

Ordered initialization steps with critical/optional failure semantics,
the state machine around them, and the default boot sequence.
"""
from .value_objects import PipelineState, PipelineStep, StepOutcome
from .entities import PipelineRun
from .services import (
    CanvasSubsystem, CompletionSignal, ErrorHandler,
    InitializationPipeline, PipelineRecoveryActions,
)
from .steps import BootSequence
from .events import (
    PipelineFailed, PipelineReady, PipelineStarted, PipelineTerminal, StepFailed,
)

__all__ = [
    "PipelineState", "PipelineStep", "StepOutcome",
    "PipelineRun",
    "CanvasSubsystem", "CompletionSignal", "ErrorHandler",
    "InitializationPipeline", "PipelineRecoveryActions",
    "BootSequence",
    "PipelineFailed", "PipelineReady", "PipelineStarted", "PipelineTerminal", "StepFailed",
]
