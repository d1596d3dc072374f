"""
chargrad Trainer
=================
The training loop: teacher-forced next-character prediction on one
randomly chosen document at a time, with gradient accumulation over a
mini-batch of documents before each Adam update.

What This Handles:
    - Picking a document uniformly at random
    - Teacher forcing: feeding the TRUE previous character at every
      position, never the model's own guess
    - Cross-entropy loss per position, averaged over the sequence
    - Gradient accumulation: N examples' gradients summed, then scaled
      by 1/N so the update size does not depend on batch size
    - Explicit gradient reset before every accumulation pass
    - Diagnostics of the last position seen (what came in, what should
      have come out, what the model thought)

Analogy:
    A spelling tutor reading a word to a student one letter at a time.
    After each letter the student guesses the next one, the tutor notes
    how surprised the student was by the real letter, and then reads the
    real letter regardless of what the student guessed.

Usage:
    >>> trainer = Trainer(model, docs, rng)
    >>> result = trainer.train_batched_steps(steps_per_call=2, batch_size=4)
    >>> print(result.step, result.loss)
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, asdict
from typing import Optional

from chargrad.data.vocab import END_LABEL
from chargrad.evaluation.metrics import Timer, perplexity_from_loss
from chargrad.model.gpt import CharGPT
from chargrad.model.ops import softmax
from chargrad.model.value import Value
from chargrad.training.optimizer import Adam

logger = logging.getLogger(__name__)


@dataclass
class ExampleResult:
    """Loss and last-position diagnostics of one training example."""
    loss: float
    context_char: str = END_LABEL
    target_char: str = END_LABEL
    predicted_char: str = END_LABEL
    target_prob: float = 0.0
    predicted_prob: float = 0.0


@dataclass
class TrainResult:
    """
    Summary of one ``train_batched_steps`` call.

    ``loss`` is averaged across all optimizer steps of the call; the
    character diagnostics come from the very last example processed.
    """
    step: int
    loss: float
    context_char: str = END_LABEL
    target_char: str = END_LABEL
    predicted_char: str = END_LABEL
    target_prob: float = 0.0
    predicted_prob: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


class Trainer:
    """
    Batched teacher-forced training for a CharGPT.

    Parameters
    ----------
    model : CharGPT
        The model whose parameters are trained in place.
    docs : list[str]
        Training documents. Must be non-empty.
    rng : random.Random
        Generator used to choose documents.
    optimizer : Adam or None
        Defaults to Adam over ``model.params`` at the model's learning
        rate.
    """

    def __init__(
        self,
        model: CharGPT,
        docs: list[str],
        rng: random.Random,
        optimizer: Optional[Adam] = None,
    ):
        if not docs:
            raise ValueError("No training documents provided.")

        self.model = model
        self.docs = list(docs)
        self.rng = rng
        self.optimizer = optimizer or Adam(
            model.params, lr=model.config.learning_rate
        )

    @property
    def step(self) -> int:
        """Number of optimizer updates applied so far."""
        return self.optimizer.t

    def train_one_example(self) -> ExampleResult:
        """
        Forward + backward on one random document. Does NOT update.

        Gradients are added to whatever is already in ``grad``.

        Raises
        ------
        ValueError
            If the encoded document has no usable positions, or holds a
            character outside the vocabulary.
        """
        model = self.model
        vocab = model.vocab

        doc = self.rng.choice(self.docs)
        tokens = vocab.encode(doc)

        n = min(len(tokens) - 1, model.config.block_size)
        if n <= 0:
            raise ValueError("Training sequence is empty.")

        cache = model.new_cache()
        losses: list[Value] = []
        result = ExampleResult(loss=0.0)

        for pos in range(n):
            token, target = tokens[pos], tokens[pos + 1]
            logits = model.forward(token, pos, cache)
            probs = softmax(logits)
            losses.append(-probs[target].log())

            if pos == n - 1:
                best = max(range(len(probs)), key=lambda i: probs[i].data)
                result.context_char = vocab.label(token)
                result.target_char = vocab.label(target)
                result.predicted_char = vocab.label(best)
                result.target_prob = probs[target].data
                result.predicted_prob = probs[best].data

        total = Value(0.0)
        for loss in losses:
            total = total + loss
        avg_loss = total * (1.0 / n)
        avg_loss.backward()

        result.loss = avg_loss.data
        return result

    def train_batched_steps(
        self,
        steps_per_call: int = 1,
        batch_size: int = 1,
    ) -> TrainResult:
        """
        Run ``steps_per_call`` optimizer updates, each averaging the
        gradients of ``batch_size`` examples. Values below 1 are treated
        as 1.

        Returns
        -------
        TrainResult
            The optimizer step count after the call, the loss averaged
            across the call's updates and the last example's diagnostics.
        """
        steps_per_call = max(steps_per_call, 1)
        batch_size = max(batch_size, 1)

        last = ExampleResult(loss=0.0)
        loss_sum = 0.0

        with Timer("train_batched_steps", log=False) as timer:
            for _ in range(steps_per_call):
                self.model.zero_grad()

                batch_loss = 0.0
                for _ in range(batch_size):
                    last = self.train_one_example()
                    batch_loss += last.loss

                self.optimizer.scale_grads(1.0 / batch_size)
                self.optimizer.step()

                batch_loss /= batch_size
                loss_sum += batch_loss
                logger.debug(
                    f"step={self.step}, batch_loss={batch_loss:.4f}"
                )

        avg_loss = loss_sum / steps_per_call
        if not math.isfinite(avg_loss):
            logger.warning(
                f"Non-finite training loss at step {self.step}: {avg_loss}"
            )

        logger.info(
            f"step={self.step}, loss={avg_loss:.4f}, "
            f"ppl={perplexity_from_loss(avg_loss):.2f}, "
            f"updates={steps_per_call}x{batch_size}, "
            f"time={timer.elapsed:.2f}s"
        )

        return TrainResult(
            step=self.step,
            loss=avg_loss,
            context_char=last.context_char,
            target_char=last.target_char,
            predicted_char=last.predicted_char,
            target_prob=last.target_prob,
            predicted_prob=last.predicted_prob,
        )

    def __repr__(self) -> str:
        return f"Trainer(docs={len(self.docs)}, step={self.step})"
