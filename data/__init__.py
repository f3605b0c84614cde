# PATH: data/__init__.py
"""
Data package.

- journal.py: append-only JSONL trade journal

Runtime files land in storage.journal_dir (default data/journal/).
"""

from data.journal import RECORD_KINDS, TradeJournal

__all__ = ["RECORD_KINDS", "TradeJournal"]
