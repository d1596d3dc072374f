"""
chargrad Character GPT
=======================
The parameter store and the single-step forward engine of a tiny
GPT-style transformer whose every weight is a scalar Value.

Architecture (one autoregressive step):
    token id, position id
      → wte[token] + wpe[position]      "Embed"
      → RMSNorm
      → for each layer:
            RMSNorm → Q, K, V projections
            append K, V to the layer's cache
            per head: softmax(q·k / √head_dim) over cached positions
                      weighted sum of cached values
            concat heads → attn_wo → + residual
            RMSNorm → mlp_fc1 (4×) → ReLU → mlp_fc2 → + residual
      → lm_head                          "Predict next character"
    logits (vocab_size)

KV Cache:
    The model sees one token per call. Keys and values of earlier
    positions are kept in a KVCache that the caller owns and passes back
    in, so attention at position t only sees the t + 1 cached entries.
    A cache lives for one training example or one generation and is
    then dropped together with the whole graph hanging off it.

Parameter Layout:
    Every matrix entry is an independent N(0, 1) · 0.02 draw, appended
    to ``params`` in creation order: wte, wpe, lm_head, then per layer
    attn_wq, attn_wk, attn_wv, attn_wo, mlp_fc1, mlp_fc2. The optimizer
    only ever sees the flat ``params`` list.

Usage:
    >>> vocab = CharVocab.from_docs(["ab", "ba"])
    >>> model = CharGPT(ModelConfig(n_embd=4, n_head=2), vocab, rng)
    >>> cache = model.new_cache()
    >>> logits = model.forward(vocab.bos_id, 0, cache)
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field

from chargrad.config import ModelConfig
from chargrad.data.vocab import CharVocab
from chargrad.model.ops import Matrix, Vector, linear, rms_norm, softmax
from chargrad.model.value import Value

logger = logging.getLogger(__name__)

INIT_STD = 0.02


@dataclass
class LayerWeights:
    """Weight matrices of one transformer block."""
    attn_wq: Matrix
    attn_wk: Matrix
    attn_wv: Matrix
    attn_wo: Matrix
    mlp_fc1: Matrix
    mlp_fc2: Matrix


@dataclass
class KVCache:
    """
    Per-layer growing lists of key and value vectors.

    ``keys[layer][t]`` is the key vector computed at position t.
    """
    keys: list[list[Vector]] = field(default_factory=list)
    values: list[list[Vector]] = field(default_factory=list)

    @classmethod
    def empty(cls, n_layer: int) -> KVCache:
        return cls(
            keys=[[] for _ in range(n_layer)],
            values=[[] for _ in range(n_layer)],
        )

    def __len__(self) -> int:
        """Number of positions cached so far."""
        return len(self.keys[0]) if self.keys else 0


class CharGPT:
    """
    Character-level transformer over scalar autograd.

    Parameters
    ----------
    config : ModelConfig
        Architecture hyperparameters. Validated on construction.
    vocab : CharVocab
        Vocabulary the embedding and output head are sized for.
    rng : random.Random
        Generator used for weight initialisation.
    """

    def __init__(
        self,
        config: ModelConfig,
        vocab: CharVocab,
        rng: random.Random,
    ):
        config.validate()
        self.config = config
        self.vocab = vocab
        self._rng = rng
        self.params: list[Value] = []

        v, e = vocab.vocab_size, config.n_embd

        self.wte = self._matrix(v, e)
        self.wpe = self._matrix(config.block_size, e)
        self.lm_head = self._matrix(v, e)

        self.layers: list[LayerWeights] = []
        for _ in range(config.n_layer):
            self.layers.append(
                LayerWeights(
                    attn_wq=self._matrix(e, e),
                    attn_wk=self._matrix(e, e),
                    attn_wv=self._matrix(e, e),
                    attn_wo=self._matrix(e, e),
                    mlp_fc1=self._matrix(4 * e, e),
                    mlp_fc2=self._matrix(e, 4 * e),
                )
            )

        logger.info(
            f"CharGPT initialized: {self.num_params:,} parameters "
            f"(vocab_size={v}, n_embd={e}, n_head={config.n_head}, "
            f"n_layer={config.n_layer}, block_size={config.block_size})"
        )

    def _matrix(self, rows: int, cols: int) -> Matrix:
        """Create a rows×cols matrix of fresh leaves and register them."""
        mat = []
        for _ in range(rows):
            row = []
            for _ in range(cols):
                p = Value(self._rng.gauss(0.0, 1.0) * INIT_STD)
                row.append(p)
                self.params.append(p)
            mat.append(row)
        return mat

    # ─── Parameter store ────────────────────────────────────────────────

    @property
    def num_params(self) -> int:
        return len(self.params)

    def named_matrices(self) -> dict[str, Matrix]:
        """Every weight matrix under a readable name (for inspection)."""
        named = {"wte": self.wte, "wpe": self.wpe, "lm_head": self.lm_head}
        for i, layer in enumerate(self.layers):
            for name in (
                "attn_wq", "attn_wk", "attn_wv", "attn_wo",
                "mlp_fc1", "mlp_fc2",
            ):
                named[f"layer{i}.{name}"] = getattr(layer, name)
        return named

    def zero_grad(self) -> None:
        """Reset every parameter gradient before a new accumulation pass."""
        for p in self.params:
            p.grad = 0.0

    def new_cache(self) -> KVCache:
        return KVCache.empty(self.config.n_layer)

    # ─── Forward engine ─────────────────────────────────────────────────

    def forward(self, token_id: int, pos_id: int, cache: KVCache) -> Vector:
        """
        Run one autoregressive step and return next-token logits.

        Parameters
        ----------
        token_id : int
            Token fed at this position.
        pos_id : int
            Position index, 0 <= pos_id < block_size.
        cache : KVCache
            Keys/values of earlier positions. This step's key and value
            are appended to it for every layer.

        Returns
        -------
        list[Value]
            vocab_size logits.
        """
        if not 0 <= token_id < self.vocab.vocab_size:
            raise ValueError(
                f"token_id {token_id} out of range for vocab_size "
                f"{self.vocab.vocab_size}"
            )
        if not 0 <= pos_id < self.config.block_size:
            raise ValueError(
                f"pos_id {pos_id} out of range for block_size "
                f"{self.config.block_size}"
            )

        n_head = self.config.n_head
        head_dim = self.config.head_dim
        scale = 1.0 / math.sqrt(head_dim)

        x = [t + p for t, p in zip(self.wte[token_id], self.wpe[pos_id])]
        x = rms_norm(x)

        for li, layer in enumerate(self.layers):
            # Attention block
            residual = x
            x = rms_norm(x)
            q = linear(x, layer.attn_wq)
            k = linear(x, layer.attn_wk)
            v = linear(x, layer.attn_wv)
            cache.keys[li].append(k)
            cache.values[li].append(v)
            keys, values = cache.keys[li], cache.values[li]

            x_attn: Vector = []
            for h in range(n_head):
                hs = h * head_dim
                q_h = q[hs:hs + head_dim]

                attn_logits = []
                for k_t in keys:
                    dot = Value(0.0)
                    for j in range(head_dim):
                        dot = dot + q_h[j] * k_t[hs + j]
                    attn_logits.append(dot * scale)
                weights = softmax(attn_logits)

                for j in range(head_dim):
                    acc = Value(0.0)
                    for w_t, v_t in zip(weights, values):
                        acc = acc + w_t * v_t[hs + j]
                    x_attn.append(acc)

            x = linear(x_attn, layer.attn_wo)
            x = [a + b for a, b in zip(x, residual)]

            # MLP block
            residual = x
            x = rms_norm(x)
            x = linear(x, layer.mlp_fc1)
            x = [xi.relu() for xi in x]
            x = linear(x, layer.mlp_fc2)
            x = [a + b for a, b in zip(x, residual)]

        return linear(x, self.lm_head)

    def __repr__(self) -> str:
        return (
            f"CharGPT(params={self.num_params}, "
            f"vocab_size={self.vocab.vocab_size}, "
            f"n_layer={self.config.n_layer})"
        )
