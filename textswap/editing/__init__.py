"""
Edit history management
"""

from .history import EditHistory, HistoryEntry

__all__ = ["EditHistory", "HistoryEntry"]
