"""
Curriculum content data models.
"""

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field


class ContentRecord(BaseModel):
    """Lesson content as read from the content store."""
    content_id: str = Field(..., description="Content identifier; owns the indexed chunks")
    lesson_id: Optional[str] = Field(default=None, description="Lesson the content belongs to")
    title: str = ""
    title_en: Optional[str] = None
    unit_title: Optional[str] = None
    subject_name: Optional[str] = None
    grade: Optional[int] = None
    difficulty: Optional[str] = None
    full_text: str = ""
    summary: Optional[str] = None
    key_points: List[str] = Field(default_factory=list)
    examples: List[Union[str, Dict[str, Any]]] = Field(default_factory=list)
    exercises: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def scope_id(self) -> str:
        return self.lesson_id or self.content_id

    def worked_examples(self) -> List[str]:
        """Render examples as plain text, accepting either strings or problem/solution dicts."""
        rendered = []
        for example in self.examples:
            if isinstance(example, str):
                text = example
            else:
                problem = example.get("problem") or example.get("question") or ""
                solution = example.get("solution") or example.get("answer") or ""
                text = f"Example: {problem}\nSolution: {solution}"
            if text.strip():
                rendered.append(text.strip())
        return rendered
