"""shipwright observability package."""

from shipwright.observability.context_logger import ContextLogger

__all__ = ["ContextLogger"]
