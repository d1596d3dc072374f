"""
chargrad Adam Optimizer
========================
Adam over a flat list of scalar Value leaves.

Update rule for parameter i with gradient g at step t:
    m_i = β1·m_i + (1 - β1)·g
    v_i = β2·v_i + (1 - β2)·g²
    m̂  = m_i / (1 - β1^t)
    v̂  = v_i / (1 - β2^t)
    data_i -= lr · m̂ / (√v̂ + ε)
    grad_i  = 0

β1 defaults to 0.85, below the common 0.9.
"""

from __future__ import annotations

import logging
import math

from chargrad.model.value import Value

logger = logging.getLogger(__name__)


class Adam:
    """
    Parameters
    ----------
    params : list[Value]
        Leaves to update, in a fixed order. Moment buffers are aligned
        with this list.
    lr : float
        Step size.
    betas : tuple[float, float]
        Decay rates of the first and second moment estimates.
    eps : float
        Added to √v̂ to avoid division by zero.
    """

    def __init__(
        self,
        params: list[Value],
        lr: float,
        betas: tuple[float, float] = (0.85, 0.99),
        eps: float = 1e-8,
    ):
        if lr <= 0:
            raise ValueError(f"lr must be positive, got {lr}")
        self.params = params
        self.lr = lr
        self.beta1, self.beta2 = betas
        self.eps = eps
        self.m = [0.0] * len(params)
        self.v = [0.0] * len(params)
        self.t = 0

    def zero_grad(self) -> None:
        for p in self.params:
            p.grad = 0.0

    def scale_grads(self, factor: float) -> None:
        """Multiply every accumulated gradient by ``factor``."""
        for p in self.params:
            p.grad *= factor

    def step(self) -> None:
        """Apply one Adam update and zero the gradients."""
        self.t += 1
        b1, b2 = self.beta1, self.beta2
        bias1 = 1.0 - b1 ** self.t
        bias2 = 1.0 - b2 ** self.t
        m, v = self.m, self.v

        for i, p in enumerate(self.params):
            g = p.grad
            m[i] = b1 * m[i] + (1.0 - b1) * g
            v[i] = b2 * v[i] + (1.0 - b2) * g * g
            m_hat = m[i] / bias1
            v_hat = v[i] / bias2
            p.data -= self.lr * m_hat / (math.sqrt(v_hat) + self.eps)
            p.grad = 0.0

    def __repr__(self) -> str:
        return f"Adam(n_params={len(self.params)}, lr={self.lr}, t={self.t})"
