"""
Statistics models — per-category study totals.
"""

from pydantic import BaseModel


class CategoryStats(BaseModel):
    total_sessions: int = 0
    completed_sessions: int = 0
    total_duration_minutes: float = 0.0
    average_duration_minutes: float = 0.0
