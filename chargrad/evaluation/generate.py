"""
chargrad Text Generator
========================
Autoregressive sampling from a CharGPT, with an optional step-by-step
explanation of every choice.

Generation Loop:
    1. Start from the control token at position 0.
    2. Run one forward step (the KV cache grows by one position).
    3. Build the sampling distribution. While the text is shorter than
       min_len the control token is suppressed.
    4. Draw a token. If it is the control token, stop without emitting
       it. Otherwise append its character and feed it back in.
    5. After block_size steps, stop regardless.

Trace Mode:
    Each step additionally records the context so far, the five most
    probable candidates (character, temperature-scaled logit,
    probability), the draw u, the interval it landed in, the chosen
    token's rank among the candidates and a one-sentence justification.

Usage:
    >>> generator = TextGenerator(model, rng)
    >>> generator.generate(SamplingOptions(temperature=0.8))
    'abba'
    >>> trace = generator.generate_with_trace()
    >>> trace.steps[0].reason
    "Chosen 'a' because draw 0.1234 fell inside cumulative interval ..."
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field, asdict
from typing import Optional

from chargrad.evaluation.sampler import (
    Draw,
    SamplingOptions,
    TraceCandidate,
    sample_from_prob_vector,
    sampling_config,
    to_prob_vector,
    top_k_candidates,
)
from chargrad.model.gpt import CharGPT

logger = logging.getLogger(__name__)

STOP_CONTROL_TOKEN = "Model selected <END> token"
STOP_LENGTH_LIMIT = "Reached block size limit"


@dataclass
class TraceStep:
    position: int
    context: str
    top_k: list[TraceCandidate]
    random_u: float
    chosen_char: str
    chosen_prob: float
    chosen_rank: int
    cum_before: float
    cum_after: float
    reason: str


@dataclass
class GenerationTrace:
    text: str
    steps: list[TraceStep] = field(default_factory=list)
    stop_reason: str = STOP_LENGTH_LIMIT

    def to_dict(self) -> dict:
        return asdict(self)


def explain_choice(
    draw: Draw,
    chosen_label: str,
    candidates: list[TraceCandidate],
) -> str:
    """One-sentence justification of a draw, citing u and its interval."""
    reason = (
        f"Chosen '{chosen_label}' because draw {draw.u:.4f} fell inside "
        f"cumulative interval [{draw.cum_before:.4f}, {draw.cum_after:.4f}) "
        f"in vocabulary index order."
    )
    if candidates and candidates[0].token_id != draw.token_id:
        reason += (
            f" Highest-probability option was '{candidates[0].char}' at "
            f"{candidates[0].prob:.4f}, but stochastic sampling can still "
            f"pick lower-ranked valid options."
        )
    return reason


class TextGenerator:
    """
    Sampling interface over a CharGPT.

    Parameters
    ----------
    model : CharGPT
        Model to sample from. Its parameters are only read.
    rng : random.Random
        Generator for the uniform draws.
    """

    def __init__(self, model: CharGPT, rng: random.Random):
        self.model = model
        self.rng = rng

    def generate(self, opts: Optional[SamplingOptions] = None) -> str:
        """Sample one text."""
        return self._run(opts, trace=False).text

    def generate_with_trace(
        self, opts: Optional[SamplingOptions] = None
    ) -> GenerationTrace:
        """Sample one text and explain every step."""
        return self._run(opts, trace=True)

    def _run(
        self, opts: Optional[SamplingOptions], trace: bool
    ) -> GenerationTrace:
        model = self.model
        vocab = model.vocab
        control_id = vocab.bos_id
        opts = sampling_config(opts or SamplingOptions(), vocab.vocab_size)

        cache = model.new_cache()
        token_id = control_id
        sample: list[str] = []
        result = GenerationTrace(text="")

        for pos in range(model.config.block_size):
            logits = model.forward(token_id, pos, cache)
            suppress_end = len(sample) < opts.min_len
            scaled, probs = to_prob_vector(
                [l.data for l in logits], opts, control_id, suppress_end
            )
            draw = sample_from_prob_vector(probs, self.rng, control_id)

            if trace:
                candidates = top_k_candidates(scaled, probs, vocab)
                chosen_rank = vocab.vocab_size
                for rank, cand in enumerate(candidates, start=1):
                    if cand.token_id == draw.token_id:
                        chosen_rank = rank
                        break
                chosen_label = vocab.label(draw.token_id)
                result.steps.append(
                    TraceStep(
                        position=pos,
                        context="".join(sample),
                        top_k=candidates,
                        random_u=draw.u,
                        chosen_char=chosen_label,
                        chosen_prob=draw.prob,
                        chosen_rank=chosen_rank,
                        cum_before=draw.cum_before,
                        cum_after=draw.cum_after,
                        reason=explain_choice(draw, chosen_label, candidates),
                    )
                )

            if draw.token_id == control_id:
                result.stop_reason = STOP_CONTROL_TOKEN
                break

            sample.append(vocab.chars[draw.token_id])
            token_id = draw.token_id

        result.text = "".join(sample)
        logger.debug(
            f"Generated {len(result.text)} chars ({result.stop_reason})"
        )
        return result
