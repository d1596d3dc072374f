"""
chargrad Character Vocabulary
==============================
Builds the character-level vocabulary the model reads and writes.

How It Works:
    Every distinct character across the training documents becomes one
    token. Characters are sorted by code point so the same corpus always
    yields the same token ids. One extra id, equal to the number of
    characters, is reserved as the control token: it marks both the start
    and the end of a sequence.

        docs = ["ab", "ba"]  →  chars = ["a", "b"], control id = 2

Unknown Characters:
    Encoding a character that was not in the training documents raises
    ValueError instead of silently dropping it, so a corpus/vocabulary
    mismatch shows up immediately.

Usage:
    >>> vocab = CharVocab.from_docs(["hello", "world"])
    >>> vocab.encode("low")
    [7, 3, 4, 6, 7]
    >>> vocab.decode([3, 4, 6])
    'low'
"""

from __future__ import annotations

import logging
from typing import Iterable

logger = logging.getLogger(__name__)

# How the control token is shown in diagnostics and traces
END_LABEL = "<END>"


class CharVocab:
    """
    Sorted character vocabulary plus one control token.

    Parameters
    ----------
    chars : list[str]
        Distinct single-character strings, in token-id order.
    """

    def __init__(self, chars: list[str]):
        if len(set(chars)) != len(chars):
            raise ValueError("Vocabulary characters must be distinct.")
        for c in chars:
            if len(c) != 1:
                raise ValueError(
                    f"Vocabulary entries must be single characters, got {c!r}"
                )

        self.chars = list(chars)
        self._index = {c: i for i, c in enumerate(self.chars)}

    @classmethod
    def from_docs(cls, docs: Iterable[str]) -> CharVocab:
        """
        Collect the distinct characters of ``docs`` in sorted order.

        Raises
        ------
        ValueError
            If the documents contain no characters at all.
        """
        charset: set[str] = set()
        for doc in docs:
            charset.update(doc)

        if not charset:
            raise ValueError(
                "Cannot build a vocabulary: the documents contain no "
                "characters."
            )

        vocab = cls(sorted(charset))
        logger.info(
            f"Built vocabulary: {len(vocab.chars)} characters + 1 control "
            f"token (vocab_size={vocab.vocab_size})"
        )
        return vocab

    @property
    def bos_id(self) -> int:
        """Id of the control token (sequence start and end)."""
        return len(self.chars)

    @property
    def vocab_size(self) -> int:
        return len(self.chars) + 1

    def __len__(self) -> int:
        return self.vocab_size

    def encode(self, doc: str) -> list[int]:
        """
        Map ``doc`` to token ids wrapped in the control token on both ends.

        Raises
        ------
        ValueError
            If ``doc`` contains a character outside the vocabulary.
        """
        tokens = [self.bos_id]
        for offset, ch in enumerate(doc):
            idx = self._index.get(ch)
            if idx is None:
                raise ValueError(
                    f"Character {ch!r} at offset {offset} is not in the "
                    f"vocabulary. Re-initialize with documents that "
                    f"contain it."
                )
            tokens.append(idx)
        tokens.append(self.bos_id)
        return tokens

    def decode(self, ids: Iterable[int]) -> str:
        """Inverse of encode; control tokens are dropped."""
        return "".join(self.chars[i] for i in ids if i != self.bos_id)

    def label(self, token_id: int) -> str:
        """Human-readable label: the character, or ``<END>``."""
        if token_id == self.bos_id:
            return END_LABEL
        return self.chars[token_id]

    def __repr__(self) -> str:
        return f"CharVocab(vocab_size={self.vocab_size}, chars={''.join(self.chars)!r})"
