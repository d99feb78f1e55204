"""Shared infrastructure: execution contexts, locking, run logging."""

from .context import ExecutionContext, background
from .logger import PipelineLogger
from .rwlock import ReadWriteLock

__all__ = ["ExecutionContext", "PipelineLogger", "ReadWriteLock", "background"]
