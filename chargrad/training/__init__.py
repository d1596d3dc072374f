"""
chargrad.training — Training Engine
====================================
    - optimizer.py — Adam over the flat parameter list
    - trainer.py   — Teacher-forced examples and batched updates

One training call:
    for each update:
        zero gradients
        batch_size × (random doc → forward each position → loss → backward)
        scale gradients by 1 / batch_size
        Adam step
"""

from chargrad.training.optimizer import Adam
from chargrad.training.trainer import ExampleResult, Trainer, TrainResult
