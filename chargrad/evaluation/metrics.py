"""
chargrad Metrics
=================
Small helpers for reporting training progress.

1. PERPLEXITY
   exp(average negative log-likelihood per character). A freshly
   initialized model sits near vocab_size (uniform guessing); a model
   that has memorised a tiny corpus approaches 1.

2. MEMORY TRACKING
   Peak Python allocations during a block, via tracemalloc. Every
   intermediate Value node is a Python object, so this is a direct
   measure of how large the autograd graph got.

3. TIMING
   Wall-clock time of a block.

Usage:
    >>> round(perplexity_from_loss(1.2), 3)
    3.32
    >>> with Timer("train") as t:
    ...     trainer.train_batched_steps(2, 4)
"""

from __future__ import annotations

import logging
import math
import time
import tracemalloc

logger = logging.getLogger(__name__)

# exp() of anything larger overflows
MAX_LOSS_FOR_PPL = 700.0


def perplexity_from_loss(loss: float) -> float:
    """
    Convert a mean cross-entropy loss (nats) into perplexity.

    Returns float('inf') for non-finite or very large losses instead of
    overflowing.
    """
    if not math.isfinite(loss):
        logger.warning(f"Non-finite loss ({loss}). Returning inf perplexity.")
        return float("inf")
    if loss > MAX_LOSS_FOR_PPL:
        logger.warning(
            f"Loss ({loss:.2f}) is very high. "
            f"Perplexity will be astronomical."
        )
        return float("inf")
    return math.exp(loss)


class MemoryTracker:
    """
    Context manager for tracking peak memory usage during a block of code.

    Usage:
        >>> with MemoryTracker("Training") as tracker:
        ...     session.train_step()
        >>> print(f"Peak: {tracker.peak_mb:.1f} MB")

    Analogy:
        Like a water meter that records the highest water level during
        a flood: even after the water recedes, you know the peak.
    """

    def __init__(self, label: str = "operation"):
        self.label = label
        self.peak_mb: float = 0.0
        self.current_mb: float = 0.0
        self.duration_seconds: float = 0.0
        self._start_time: float = 0.0

    def __enter__(self):
        tracemalloc.start()
        self._start_time = time.time()
        return self

    def __exit__(self, *args):
        current, peak = tracemalloc.get_traced_memory()
        tracemalloc.stop()

        self.current_mb = current / (1024 * 1024)
        self.peak_mb = peak / (1024 * 1024)
        self.duration_seconds = time.time() - self._start_time

        logger.info(
            f"[{self.label}] Memory: peak={self.peak_mb:.1f}MB, "
            f"current={self.current_mb:.1f}MB, "
            f"time={self.duration_seconds:.2f}s"
        )

    def __repr__(self) -> str:
        return (
            f"MemoryTracker({self.label}: "
            f"peak={self.peak_mb:.1f}MB, "
            f"time={self.duration_seconds:.2f}s)"
        )


class Timer:
    """
    Simple context manager for timing operations.

    Usage:
        >>> with Timer("Training") as t:
        ...     train()
        >>> print(f"Took: {t.elapsed:.2f}s")
    """

    def __init__(self, label: str = "operation", log: bool = True):
        self.label = label
        self.log = log
        self.elapsed: float = 0.0
        self._start: float = 0.0

    def __enter__(self):
        self._start = time.time()
        return self

    def __exit__(self, *args):
        self.elapsed = time.time() - self._start
        if self.log:
            logger.debug(f"[{self.label}] Time: {self.elapsed:.2f}s")
