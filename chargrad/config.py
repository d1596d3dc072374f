"""
chargrad Configuration System
==============================
Centralized configuration for every chargrad component using Python
dataclasses. Model shape, training cadence and sampling defaults all
live here.

Think of this as the "blueprint" for a session. Change a value here and
it propagates everywhere.

Usage:
    # Load from YAML file:
    >>> config = CharGradConfig.from_yaml("configs/default.yaml")

    # Create programmatically:
    >>> config = CharGradConfig(
    ...     model=ModelConfig(n_embd=16, n_head=4),
    ...     training=TrainingConfig(batch_size=8),
    ... )

    # Save to YAML:
    >>> config.to_yaml("configs/my_experiment.yaml")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


# =============================================================================
# Model Configuration
# =============================================================================

@dataclass
class ModelConfig:
    """
    Architecture hyperparameters for the character-level transformer.

    Analogy: If the model is a building, these parameters define how tall
    it is (n_layer), how wide each floor is (n_embd), how many people read
    each floor in parallel (n_head) and how long a hallway it has
    (block_size).

    Parameters
    ----------
    n_embd : int
        Width of every token vector. Every character is represented as a
        list of this many scalars.

    n_head : int
        Number of attention heads. Must evenly divide n_embd; each head
        looks at an n_embd / n_head slice of the vector.

    n_layer : int
        Number of transformer blocks stacked on top of each other.

    block_size : int
        Maximum sequence length, which is also the number of learned
        position embeddings and the hard cap on generated characters.

    learning_rate : float
        Adam step size. Stays fixed for the whole session.
    """
    n_embd: int = 16
    n_head: int = 4
    n_layer: int = 1
    block_size: int = 16
    learning_rate: float = 0.01

    def validate(self) -> None:
        """
        Check that all model parameters are valid and consistent.

        Raises
        ------
        ValueError
            If any parameter is invalid or inconsistent with others.
        """
        if self.n_embd <= 0:
            raise ValueError(f"n_embd must be positive, got {self.n_embd}")
        if self.n_head <= 0:
            raise ValueError(f"n_head must be positive, got {self.n_head}")
        if self.n_embd % self.n_head != 0:
            raise ValueError(
                f"n_embd ({self.n_embd}) must be divisible by n_head "
                f"({self.n_head}). Each head gets n_embd/n_head = "
                f"{self.n_embd / self.n_head:.1f} dimensions, which "
                f"must be an integer."
            )
        if self.n_layer < 1:
            raise ValueError(f"n_layer must be >= 1, got {self.n_layer}")
        if self.block_size < 1:
            raise ValueError(
                f"block_size must be >= 1, got {self.block_size}"
            )
        if self.learning_rate <= 0:
            raise ValueError(
                f"learning_rate must be positive, got {self.learning_rate}"
            )

    @property
    def head_dim(self) -> int:
        """Dimension per attention head (n_embd / n_head)."""
        return self.n_embd // self.n_head

    def param_count(self, vocab_size: int) -> int:
        """
        Exact number of scalar parameters for a given vocabulary size.

        Token embedding + LM head (2·V·E), position embedding (B·E), and
        per layer four E×E attention matrices plus the 4E×E and E×4E MLP
        matrices (12·E²).
        """
        e = self.n_embd
        return (
            2 * vocab_size * e
            + self.block_size * e
            + self.n_layer * 12 * e * e
        )

    @classmethod
    def from_dict(cls, raw: dict) -> ModelConfig:
        """
        Build from a plain mapping, accepting ``lr`` as an alias for
        ``learning_rate``. Unknown keys are rejected.
        """
        raw = dict(raw)
        if "lr" in raw:
            raw.setdefault("learning_rate", raw.pop("lr"))
        unknown = set(raw) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(
                f"Unknown model config keys: {sorted(unknown)}. "
                f"Expected a subset of {list(cls.__dataclass_fields__)}"
            )
        return cls(**raw)


# =============================================================================
# Training Configuration
# =============================================================================

@dataclass
class TrainingConfig:
    """
    Cadence of each training call.

    Parameters
    ----------
    steps_per_call : int
        Optimizer updates performed by one ``train_step`` call when the
        caller does not say otherwise.

    batch_size : int
        Documents whose gradients are accumulated (and averaged) before
        each optimizer update.

    seed : int or None
        Seed for the session's random generator. None = fresh entropy, so
        runs are not reproducible.

    log_every : int
        Log a progress line every N training calls. 0 disables it.
    """
    steps_per_call: int = 2
    batch_size: int = 4
    seed: Optional[int] = None
    log_every: int = 1

    def validate(self) -> None:
        """Validate training parameters."""
        if self.steps_per_call < 1:
            raise ValueError(
                f"steps_per_call must be >= 1, got {self.steps_per_call}"
            )
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.log_every < 0:
            raise ValueError(f"log_every must be >= 0, got {self.log_every}")


# =============================================================================
# Sampling Configuration
# =============================================================================

@dataclass
class SamplingConfig:
    """
    Defaults used when a generation request leaves an option out.

    Parameters
    ----------
    temperature : float
        Logits are divided by this before softmax. Lower = sharper.

    top_k : int
        Keep only the k most likely tokens. 0 = disabled.

    min_len : int
        The control token cannot be sampled until the output holds at
        least this many characters.
    """
    temperature: float = 0.7
    top_k: int = 5
    min_len: int = 3

    def validate(self) -> None:
        """Validate sampling parameters."""
        if self.temperature <= 0:
            raise ValueError(
                f"temperature must be positive, got {self.temperature}"
            )
        if self.top_k < 0:
            raise ValueError(f"top_k must be >= 0, got {self.top_k}")
        if self.min_len < 0:
            raise ValueError(f"min_len must be >= 0, got {self.min_len}")


# =============================================================================
# Master Configuration
# =============================================================================

@dataclass
class CharGradConfig:
    """
    Master configuration combining all sub-configurations.

    Usage:
        >>> config = CharGradConfig.from_yaml("configs/default.yaml")
        >>> config = CharGradConfig()
        >>> config.validate()
        >>> config.to_yaml("configs/my_experiment.yaml")
    """
    model: ModelConfig = field(default_factory=ModelConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)

    def validate(self) -> None:
        """
        Validate all sub-configurations.

        Raises
        ------
        ValueError
            If any parameter is invalid.
        """
        self.model.validate()
        self.training.validate()
        self.sampling.validate()

        logger.info(
            f"Config validated: n_embd={self.model.n_embd}, "
            f"n_head={self.model.n_head}, n_layer={self.model.n_layer}, "
            f"block_size={self.model.block_size}"
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> CharGradConfig:
        """
        Load configuration from a YAML file.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        CharGradConfig
            Loaded and validated configuration.

        Raises
        ------
        FileNotFoundError
            If the YAML file does not exist.
        yaml.YAMLError
            If the YAML file is malformed.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(
                f"Config file not found: {path}. "
                f"Create one from configs/default.yaml as a template."
            )

        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)

        if raw is None:
            raise ValueError(f"Config file is empty: {path}")

        config = cls(
            model=ModelConfig.from_dict(raw.get("model", {})),
            training=TrainingConfig(**raw.get("training", {})),
            sampling=SamplingConfig(**raw.get("sampling", {})),
        )

        config.validate()
        return config

    def to_yaml(self, path: str | Path) -> None:
        """
        Save configuration to a YAML file.

        Creates parent directories if they don't exist.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                asdict(self),
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

        logger.info(f"Config saved to {path}")

    def to_dict(self) -> dict:
        """Convert to nested dictionary."""
        return asdict(self)

    @classmethod
    def for_smoke_test(cls) -> CharGradConfig:
        """
        A minimal configuration that trains in seconds on any machine.
        """
        return cls(
            model=ModelConfig(
                n_embd=8,
                n_head=2,
                n_layer=1,
                block_size=8,
                learning_rate=0.05,
            ),
            training=TrainingConfig(
                steps_per_call=1,
                batch_size=2,
                seed=42,
                log_every=5,
            ),
            sampling=SamplingConfig(temperature=0.7, top_k=5, min_len=1),
        )

    def __repr__(self) -> str:
        """Pretty-print the configuration."""
        lines = [
            "CharGradConfig(",
            f"  Model:    n_embd={self.model.n_embd}, "
            f"n_head={self.model.n_head}, n_layer={self.model.n_layer}, "
            f"block_size={self.model.block_size}, "
            f"lr={self.model.learning_rate}",
            f"  Training: steps_per_call={self.training.steps_per_call}, "
            f"batch_size={self.training.batch_size}, "
            f"seed={self.training.seed}",
            f"  Sampling: temperature={self.sampling.temperature}, "
            f"top_k={self.sampling.top_k}, min_len={self.sampling.min_len}",
            ")",
        ]
        return "\n".join(lines)
