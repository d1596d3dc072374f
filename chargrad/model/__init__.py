"""
chargrad.model — Model Architecture
====================================
    ┌──────────────────────────────────────────────┐
    │                   CharGPT                    │
    │                                              │
    │  wte + wpe → RMSNorm                         │
    │  ┌─ Block × n_layer ──────────────────────┐  │
    │  │  RMSNorm → multi-head attention (KV    │  │
    │  │  cache) → attn_wo → + residual         │  │
    │  │  RMSNorm → fc1 → ReLU → fc2 → + resid. │  │
    │  └────────────────────────────────────────┘  │
    │  lm_head → logits                            │
    └──────────────────────────────────────────────┘

Components:
    - value.py — Scalar autograd node and backward pass
    - ops.py   — linear, softmax, rms_norm over lists of Values
    - gpt.py   — Parameter store, KV cache, single-step forward
"""

from chargrad.model.value import Value
from chargrad.model.ops import linear, softmax, rms_norm
from chargrad.model.gpt import CharGPT, KVCache, LayerWeights
