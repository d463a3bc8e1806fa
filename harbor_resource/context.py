"""Utilities for tracing the steps of a pipeline run."""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


step_trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("step_trace")


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Record entry and exit of a named pipeline step."""
    stack = step_trace.get([])
    token = step_trace.set(stack + [name])
    label = " > ".join(stack + [name])
    t1 = perf_counter()
    _LOGGER.debug("[Step] > %s", label)
    try:
        yield
    except Exception:
        _LOGGER.debug("[Step] ! %s failed after %0.2fs", label, perf_counter() - t1)
        raise
    finally:
        step_trace.reset(token)
    _LOGGER.debug("[Step] < %s (%0.2fs)", label, perf_counter() - t1)
