"""
chargrad Sampling
==================
Turns next-character logits into a probability vector and draws one
token from it, keeping every number needed to explain the choice.

Pipeline:
    logits ─┬─ ÷ temperature            Sharper (<1) or flatter (>1)
            ├─ stable softmax
            ├─ top-k mask               Keep the k most likely, zero the rest
            ├─ suppress control token   While the output is shorter than min_len
            ├─ renormalize
            └─ uniform fallback         If nothing is left (sum == 0)

Inverse-CDF Draw:
    Draw u ~ U[0, 1). Walk the probabilities in vocabulary-index order,
    keeping a running sum; the first token whose cumulative sum exceeds u
    wins. Its interval [cum_before, cum_after) and u itself are returned
    so a trace can say *why* that token was picked.

        probs  = [0.1, 0.6, 0.3]
        cum    = [0.1, 0.7, 1.0]
        u=0.42 → falls in [0.1, 0.7) → token 1

All arithmetic here is on plain floats (numpy arrays); nothing is
recorded in the autograd graph.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from chargrad.data.vocab import CharVocab

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
TRACE_TOP_K = 5


@dataclass
class SamplingOptions:
    """
    Parameters
    ----------
    temperature : float
        Logit divisor. Non-positive values fall back to 0.7.
    top_k : int
        Keep only the k most likely tokens; 0 keeps all.
    min_len : int
        Minimum number of characters before the control token may be
        sampled.
    """
    temperature: float = DEFAULT_TEMPERATURE
    top_k: int = 5
    min_len: int = 3


@dataclass
class Draw:
    """Result of one inverse-CDF draw."""
    token_id: int
    u: float
    cum_before: float
    cum_after: float
    prob: float


@dataclass
class TraceCandidate:
    char: str
    token_id: int
    logit: float
    prob: float


def sampling_config(opts: SamplingOptions, vocab_size: int) -> SamplingOptions:
    """Return a copy of ``opts`` with defaults applied and ranges clamped."""
    temperature = opts.temperature
    if temperature <= 0:
        temperature = DEFAULT_TEMPERATURE
    top_k = min(max(opts.top_k, 0), vocab_size)
    min_len = max(opts.min_len, 0)
    return SamplingOptions(temperature=temperature, top_k=top_k, min_len=min_len)


def to_prob_vector(
    logits: Sequence[float],
    opts: SamplingOptions,
    control_id: int,
    suppress_end: bool,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Build the sampling distribution.

    Parameters
    ----------
    logits : sequence of float
        Raw next-token logits.
    opts : SamplingOptions
        Already passed through ``sampling_config``.
    control_id : int
        Id of the control (end) token.
    suppress_end : bool
        Zero the control token's probability.

    Returns
    -------
    (scaled, probs)
        Temperature-scaled logits and the final probability vector, which
        sums to 1.
    """
    scaled = np.asarray(logits, dtype=np.float64) / opts.temperature
    n = scaled.shape[0]

    with np.errstate(invalid="ignore", over="ignore"):
        exps = np.exp(scaled - np.max(scaled))
        total = exps.sum()
        probs = exps / total if total > 0 else exps

    if 0 < opts.top_k < n:
        order = np.argsort(-probs, kind="stable")
        probs[order[opts.top_k:]] = 0.0

    if suppress_end and 0 <= control_id < n:
        probs[control_id] = 0.0

    total = probs.sum()
    if total > 0:
        probs = probs / total
    else:
        logger.warning(
            "Probability mass vanished after filtering; "
            "falling back to a uniform distribution."
        )
        probs = np.full(n, 1.0 / n)
        if suppress_end and n > 1 and 0 <= control_id < n:
            probs[:] = 1.0 / (n - 1)
            probs[control_id] = 0.0

    return scaled, probs


def select_interval(probs: Sequence[float], u: float, fallback_id: int) -> Draw:
    """
    Deterministic part of the draw: find the interval that contains ``u``.

    If rounding leaves the total below ``u`` no index qualifies and
    ``fallback_id`` is returned with ``cum_after`` set to the final sum.
    """
    cumulative = 0.0
    for idx, p in enumerate(probs):
        prev = cumulative
        cumulative += float(p)
        if u < cumulative:
            return Draw(
                token_id=idx, u=u, cum_before=prev,
                cum_after=cumulative, prob=float(p),
            )
    return Draw(
        token_id=fallback_id, u=u, cum_before=0.0,
        cum_after=cumulative, prob=0.0,
    )


def sample_from_prob_vector(
    probs: Sequence[float],
    rng: random.Random,
    fallback_id: int,
) -> Draw:
    """Inverse-CDF sample one token id from ``probs``."""
    return select_interval(probs, rng.random(), fallback_id)


def top_k_candidates(
    scaled: Sequence[float],
    probs: Sequence[float],
    vocab: CharVocab,
    k: int = TRACE_TOP_K,
) -> list[TraceCandidate]:
    """The ``k`` most probable tokens, highest first."""
    order = np.argsort(-np.asarray(probs, dtype=np.float64), kind="stable")[:k]
    return [
        TraceCandidate(
            char=vocab.label(int(i)),
            token_id=int(i),
            logit=float(scaled[i]),
            prob=float(probs[i]),
        )
        for i in order
    ]
