"""
chargrad Vector Primitives
===========================
The three building blocks the forward pass is made of, written over
plain lists of Value nodes. There are no tensors here: a "vector" is a
``list[Value]`` and a "matrix" is a ``list[list[Value]]`` stored row by
row as ``[out_dim][in_dim]``.

    linear(x, W)   y_i = Σ_j W[i][j] · x_j
    softmax(z)     p_i = exp(z_i - max z) / Σ_k exp(z_k - max z)
    rms_norm(x)    y_i = x_i / sqrt(mean(x²) + 1e-5)
"""

from __future__ import annotations

from chargrad.model.value import Value

Vector = list[Value]
Matrix = list[list[Value]]

RMS_EPS = 1e-5


def linear(x: Vector, w: Matrix) -> Vector:
    """Matrix-vector product; output length is the row count of ``w``."""
    out = []
    for row in w:
        if len(row) != len(x):
            raise ValueError(
                f"linear: row width {len(row)} does not match input "
                f"length {len(x)}"
            )
        acc = Value(0.0)
        for wij, xj in zip(row, x):
            acc = acc + wij * xj
        out.append(acc)
    return out


def softmax(logits: Vector) -> Vector:
    """
    Numerically stable softmax.

    The max logit is subtracted as a constant, so it shifts values without
    adding a graph edge; the result is invariant to adding the same
    number to every logit.
    """
    max_val = max(v.data for v in logits)
    exps = [(v - max_val).exp() for v in logits]
    total = Value(0.0)
    for e in exps:
        total = total + e
    inv_total = total.pow(-1)
    return [e * inv_total for e in exps]


def rms_norm(x: Vector) -> Vector:
    # no learned per-channel gain
    sum_sq = Value(0.0)
    for xi in x:
        sum_sq = sum_sq + xi * xi
    ms = sum_sq * (1.0 / len(x))
    scale = (ms + RMS_EPS).pow(-0.5)
    return [xi * scale for xi in x]
