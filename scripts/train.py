#!/usr/bin/env python3
"""
chargrad — Training Script
===========================
Builds a fresh model for a text corpus, trains it for a number of calls
and prints a few samples (optionally with the step-by-step trace).

The corpus file holds one document per line; blank lines are skipped.
Nothing is written to disk: the model lives only for the duration of
the script.

Usage:
    python scripts/train.py --corpus names.txt --calls 300
    python scripts/train.py --config configs/default.yaml --corpus names.txt --trace
    python scripts/train.py --smoke-test
"""

import argparse
import logging
import sys
from pathlib import Path

from tqdm import tqdm

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from chargrad.config import CharGradConfig
from chargrad.evaluation.metrics import MemoryTracker
from chargrad.session import Session

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

SMOKE_CORPUS = ["ab", "ba", "abba", "baab"]


def load_corpus(path: Path) -> list[str]:
    """Read one document per non-empty line."""
    if not path.exists():
        raise FileNotFoundError(f"Corpus file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        docs = [line.rstrip("\n") for line in f]
    docs = [d for d in docs if d.strip()]
    if not docs:
        raise ValueError(f"Corpus file has no non-empty lines: {path}")
    return docs


def print_trace(trace: dict) -> None:
    print(f"\nText: {trace['text']!r}  ({trace['stop_reason']})")
    for step in trace["steps"]:
        candidates = ", ".join(
            f"{c['char']!r}:{c['prob']:.3f}" for c in step["top_k"]
        )
        print(
            f"  [{step['position']:>2}] context={step['context']!r:<16} "
            f"top=[{candidates}]"
        )
        print(f"       {step['reason']}")


def main():
    parser = argparse.ArgumentParser(
        description="chargrad Training",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Train on a file of names:
    python scripts/train.py --corpus names.txt --calls 500

    # Quick smoke test on a built-in corpus:
    python scripts/train.py --smoke-test
        """,
    )
    parser.add_argument("--config", type=str, default="configs/default.yaml")
    parser.add_argument("--smoke-test", action="store_true")
    parser.add_argument("--corpus", type=str, default=None)
    parser.add_argument(
        "--calls", type=int, default=200,
        help="Number of train_step calls",
    )
    parser.add_argument("--steps-per-call", type=int, default=None)
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument(
        "--samples", type=int, default=5,
        help="Texts to generate after training",
    )
    parser.add_argument(
        "--trace", action="store_true",
        help="Explain every sampling step of the first sample",
    )
    args = parser.parse_args()

    if args.smoke_test:
        config = CharGradConfig.for_smoke_test()
        docs = SMOKE_CORPUS
        args.calls = min(args.calls, 20)
    else:
        config = CharGradConfig.from_yaml(args.config)
        if args.corpus is None:
            parser.error("--corpus is required unless --smoke-test is set")
        docs = load_corpus(Path(args.corpus))

    print(config)

    session = Session(training=config.training, sampling=config.sampling)
    info = session.initialize(docs, config.model)
    logger.info(f"{len(docs):,} documents, {info['params']:,} parameters")

    # ─── Training ───────────────────────────────────────────────────
    result = None
    with MemoryTracker("Training") as mem:
        progress = tqdm(range(args.calls), desc="train", unit="call")
        for _ in progress:
            result = session.train_step(args.steps_per_call, args.batch_size)
            progress.set_postfix(step=result["step"], loss=f"{result['loss']:.4f}")

    if result is not None:
        logger.info(
            f"Training complete: step={result['step']}, "
            f"loss={result['loss']:.4f}, peak_mem={mem.peak_mb:.1f}MB, "
            f"time={mem.duration_seconds:.1f}s"
        )

    # ─── Sampling ───────────────────────────────────────────────────
    logger.info("=" * 60)
    logger.info("Samples")
    logger.info("=" * 60)

    for i in range(args.samples):
        if i == 0 and args.trace:
            print_trace(session.generate_with_trace())
        else:
            print(session.generate()["text"])


if __name__ == "__main__":
    main()
