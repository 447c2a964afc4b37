"""
Event Models Module - Pydantic schemas for change-feed events
"""

from .card_change import CardChangeEvent

__all__ = [
    "CardChangeEvent",
]
