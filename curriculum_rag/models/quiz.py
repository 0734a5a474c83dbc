"""
Quiz data models.
"""

from typing import List
from pydantic import BaseModel, Field, model_validator


class QuizQuestion(BaseModel):
    """Multiple-choice question generated from lesson content."""
    question: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=2)
    correct_answer: str = Field(..., alias="correctAnswer")
    explanation: str = ""

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def answer_must_be_an_option(self) -> "QuizQuestion":
        if self.correct_answer not in self.options:
            raise ValueError("correct_answer must be one of the options")
        return self
