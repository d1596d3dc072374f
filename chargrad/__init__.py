"""
chargrad
========
A character-level GPT trained on its own scalar autograd engine.

Every weight, activation and loss in this package is a single Python
float wrapped in a Value node. There are no tensors and no external
numerical backend in the forward or backward pass, which keeps every
step of training inspectable by hand.

Quick Start:
    >>> from chargrad.session import Session
    >>> session = Session()
    >>> session.initialize(["emma", "olivia", "ava"], {"n_embd": 16, "n_head": 4,
    ...                    "n_layer": 1, "block_size": 16, "learning_rate": 0.01})
    >>> for _ in range(100):
    ...     session.train_step()
    >>> session.generate_with_trace()["text"]

Subpackages:
    - chargrad.data       — Character vocabulary
    - chargrad.model      — Scalar autograd, vector primitives, the transformer
    - chargrad.training   — Adam and the batched training loop
    - chargrad.evaluation — Sampling, traced generation, metrics
"""

__version__ = "0.1.0"
