# continuity/__init__.py
"""
Continuity: durable, tamper-evident action log for autonomous agents.
Every financial transaction, commit or message an agent performs is written as a
hash-chained JSONL record, fsync'd before the caller is allowed to proceed.

Inspired by write-ahead logs + airplane flight data recorders for agent actions.
"""

__version__ = "0.1.0"
