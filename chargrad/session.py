"""
chargrad Session
=================
The single entry point an outside caller (a web handler, a notebook, the
CLI script) talks to. A Session owns one model at a time and exposes
four operations:

    initialize(docs, config)       → {"params": int}
    train_step(steps, batch)       → {"step", "loss", "context_char", ...}
    generate(options)              → {"text": str}
    generate_with_trace(options)   → {"text", "steps", "stop_reason"}

Concurrency:
    One exclusive lock guards the model. Every operation holds it for its
    whole duration, so training and generation never interleave and two
    forward passes never run at once. Waiters are served in whatever
    order ``threading.Lock`` grants them. There is no timeout.

Randomness:
    Each Session owns a ``random.Random`` seeded once, when the Session is
    created, from ``TrainingConfig.seed``. It drives weight
    initialisation, document choice and sampling draws. Two sessions with
    the same seed and the same calls produce the same results.

State:
    Everything lives in memory. ``initialize`` throws the previous model
    (and its optimizer state) away completely.

Usage:
    >>> session = Session()
    >>> session.initialize(["ab", "ba"], {"n_embd": 4, "n_head": 2,
    ...                                   "n_layer": 1, "block_size": 8,
    ...                                   "learning_rate": 0.05})
    {'params': 248}
    >>> result = session.train_step(steps_per_call=2, batch_size=4)
    >>> session.generate({"temperature": 0.8})
    {'text': 'ab'}
"""

from __future__ import annotations

import logging
import random
import threading
from typing import Optional, Union

from chargrad.config import ModelConfig, SamplingConfig, TrainingConfig
from chargrad.data.vocab import CharVocab
from chargrad.evaluation.generate import TextGenerator
from chargrad.evaluation.sampler import SamplingOptions
from chargrad.model.gpt import CharGPT
from chargrad.training.trainer import Trainer

logger = logging.getLogger(__name__)

OptionsLike = Union[SamplingOptions, dict, None]


class Session:
    """
    Handle around one CharGPT and its trainer/generator.

    Parameters
    ----------
    training : TrainingConfig or None
        Defaults for ``train_step`` and the generator seed.
    sampling : SamplingConfig or None
        Defaults substituted for missing or non-positive generation
        options.
    rng : random.Random or None
        Explicit generator. Overrides ``training.seed`` when given.
    """

    def __init__(
        self,
        training: Optional[TrainingConfig] = None,
        sampling: Optional[SamplingConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.training = training or TrainingConfig()
        self.sampling = sampling or SamplingConfig()
        self.training.validate()
        self.sampling.validate()

        self.rng = rng or random.Random(self.training.seed)
        self._lock = threading.Lock()
        self._model: Optional[CharGPT] = None
        self._trainer: Optional[Trainer] = None
        self._generator: Optional[TextGenerator] = None
        self._calls = 0

    # ─── State ──────────────────────────────────────────────────────────

    @property
    def is_initialized(self) -> bool:
        return self._model is not None

    @property
    def model(self) -> CharGPT:
        if self._model is None:
            raise RuntimeError(
                "Model not initialized. Call initialize() first."
            )
        return self._model

    @property
    def param_count(self) -> int:
        with self._lock:
            return self.model.num_params

    @property
    def step(self) -> int:
        with self._lock:
            if self._trainer is None:
                raise RuntimeError(
                    "Model not initialized. Call initialize() first."
                )
            return self._trainer.step

    # ─── Operations ─────────────────────────────────────────────────────

    def initialize(
        self,
        docs: list[str],
        config: Union[ModelConfig, dict],
    ) -> dict:
        """
        Build a brand-new model for ``docs``, replacing any previous one.

        Parameters
        ----------
        docs : list[str]
            Training documents; their characters form the vocabulary.
        config : ModelConfig or dict
            Model hyperparameters. A dict may use the keys ``n_embd``,
            ``n_head``, ``n_layer``, ``block_size``, ``learning_rate``
            (or ``lr``).

        Returns
        -------
        dict
            ``{"params": <number of scalar parameters>}``

        Raises
        ------
        ValueError
            If ``docs`` is empty or has no characters, or the config is
            invalid.
        """
        if isinstance(config, dict):
            config = ModelConfig.from_dict(config)
        config.validate()
        if not docs:
            raise ValueError("No training documents provided.")

        with self._lock:
            vocab = CharVocab.from_docs(docs)
            model = CharGPT(config, vocab, self.rng)
            self._model = model
            self._trainer = Trainer(model, docs, self.rng)
            self._generator = TextGenerator(model, self.rng)
            self._calls = 0

        logger.info(
            f"Session initialized on {len(docs)} documents: "
            f"{model.num_params:,} parameters"
        )
        return {"params": model.num_params}

    def train_step(
        self,
        steps_per_call: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> dict:
        """
        Run one batched training call.

        Missing or non-positive arguments fall back to
        ``TrainingConfig.steps_per_call`` / ``batch_size``.

        Returns
        -------
        dict
            ``step, loss, context_char, target_char, predicted_char,
            target_prob, predicted_prob``

        Raises
        ------
        RuntimeError
            If no model has been initialized.
        """
        if not steps_per_call or steps_per_call <= 0:
            steps_per_call = self.training.steps_per_call
        if not batch_size or batch_size <= 0:
            batch_size = self.training.batch_size

        with self._lock:
            trainer = self._require_trainer()
            result = trainer.train_batched_steps(steps_per_call, batch_size)
            self._calls += 1
            calls = self._calls

        log_every = self.training.log_every
        if log_every > 0 and calls % log_every == 0:
            logger.info(
                f"step={result.step}, call={calls}, "
                f"last: {result.context_char!r} → {result.target_char!r} "
                f"(p={result.target_prob:.3f}), "
                f"predicted {result.predicted_char!r} "
                f"(p={result.predicted_prob:.3f})"
            )
        return result.to_dict()

    def generate(self, options: OptionsLike = None) -> dict:
        """Sample one text. Returns ``{"text": str}``."""
        opts = self._resolve_options(options)
        with self._lock:
            generator = self._require_generator()
            text = generator.generate(opts)
        return {"text": text}

    def generate_with_trace(self, options: OptionsLike = None) -> dict:
        """
        Sample one text and explain each step.

        Returns
        -------
        dict
            ``{"text": str, "steps": [TraceStep as dict, ...],
            "stop_reason": str}``
        """
        opts = self._resolve_options(options)
        with self._lock:
            generator = self._require_generator()
            trace = generator.generate_with_trace(opts)
        return trace.to_dict()

    # ─── Helpers ────────────────────────────────────────────────────────

    def _require_trainer(self) -> Trainer:
        if self._trainer is None:
            raise RuntimeError(
                "Model not initialized. Call initialize() first."
            )
        return self._trainer

    def _require_generator(self) -> TextGenerator:
        if self._generator is None:
            raise RuntimeError(
                "Model not initialized. Call initialize() first."
            )
        return self._generator

    def _resolve_options(self, options: OptionsLike) -> SamplingOptions:
        """Fill missing or non-positive options from the sampling defaults."""
        if options is None:
            options = {}
        if isinstance(options, SamplingOptions):
            options = {
                "temperature": options.temperature,
                "top_k": options.top_k,
                "min_len": options.min_len,
            }

        unknown = set(options) - {"temperature", "top_k", "min_len"}
        if unknown:
            raise ValueError(
                f"Unknown sampling options: {sorted(unknown)}. "
                f"Expected temperature, top_k, min_len."
            )

        defaults = self.sampling
        temperature = options.get("temperature") or 0
        top_k = options.get("top_k") or 0
        min_len = options.get("min_len") or 0
        return SamplingOptions(
            temperature=temperature if temperature > 0 else defaults.temperature,
            top_k=top_k if top_k > 0 else defaults.top_k,
            min_len=min_len if min_len > 0 else defaults.min_len,
        )

    def __repr__(self) -> str:
        if self._model is None:
            return "Session(uninitialized)"
        return f"Session(params={self.param_count}, step={self.step})"
