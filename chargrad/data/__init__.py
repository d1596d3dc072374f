"""
chargrad.data — Vocabulary
===========================
Text enters the system through one object:

    **CharVocab** (`vocab.py`):
       Sorted distinct characters of the training documents plus one
       control token that marks both sequence start and sequence end.

Information Flow:
    Raw documents
        → CharVocab.from_docs (builds vocabulary)
        → CharVocab.encode (control + ids + control)
        → Trainer (one position at a time)
"""

from chargrad.data.vocab import CharVocab, END_LABEL
