"""
chargrad.evaluation — Sampling & Metrics
=========================================
    - sampler.py  — Probability vector construction and inverse-CDF draws
    - generate.py — Plain and traced text generation
    - metrics.py  — Perplexity, timing and memory tracking
"""

from chargrad.evaluation.sampler import (
    Draw,
    SamplingOptions,
    TraceCandidate,
    sample_from_prob_vector,
    sampling_config,
    to_prob_vector,
)
from chargrad.evaluation.generate import GenerationTrace, TextGenerator, TraceStep
from chargrad.evaluation.metrics import MemoryTracker, Timer, perplexity_from_loss
