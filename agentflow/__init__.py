"""Top-level package exports for agentflow."""

from .runtime import CompleteResult, GenerationOrchestrator, InterruptedResult, StreamPart, build_orchestrator

__all__ = [
    "CompleteResult",
    "GenerationOrchestrator",
    "InterruptedResult",
    "StreamPart",
    "build_orchestrator",
]
