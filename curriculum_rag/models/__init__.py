# Models Module
"""
Pydantic models for content records and structured model output.
"""

from .content import ContentRecord
from .quiz import QuizQuestion

__all__ = [
    "ContentRecord",
    "QuizQuestion",
]
