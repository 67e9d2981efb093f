"""Generation runtime: model loop, retry policy and the orchestrator."""

from .app import build_orchestrator
from .model_call import ModelCall
from .orchestrator import GenerateRequest, GenerationOrchestrator
from .results import (
    CompleteResult,
    GenerateResult,
    GenerateStep,
    InterruptedResult,
    StreamPart,
    ToolCallRecord,
    ToolResultRecord,
    Usage,
)
from .retry import RetryLoopState, handle_generation_error, should_use_fallback

__all__ = [
    "CompleteResult",
    "GenerateRequest",
    "GenerateResult",
    "GenerateStep",
    "GenerationOrchestrator",
    "InterruptedResult",
    "ModelCall",
    "RetryLoopState",
    "StreamPart",
    "ToolCallRecord",
    "ToolResultRecord",
    "Usage",
    "build_orchestrator",
    "handle_generation_error",
    "should_use_fallback",
]
