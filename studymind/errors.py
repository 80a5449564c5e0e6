"""Typed failures raised by the orchestration pipeline.

Every error carries a stable, human-readable message and a category so the
HTTP layer can render a structured response without leaking provider details.
"""

from typing import Optional


class StudyMindError(Exception):
    """Base class for all pipeline failures."""

    category = "internal"
    status_code = 500
    default_message = "Something went wrong. Please try again later."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message, "category": self.category}


class ClassificationError(StudyMindError):
    """No valid intent could be derived from the user's message."""

    category = "classification"
    status_code = 400
    default_message = "Please clarify what you would like me to do."


class PlanningError(StudyMindError):
    """The content plan was empty or incomplete."""

    category = "planning"
    status_code = 400
    default_message = "Please be more specific about what you would like me to create."


class GenerationError(StudyMindError):
    """A language-model, rendering, or storage provider call failed."""

    category = "generation"
    status_code = 502
    default_message = "Content generation failed. Please try again later."


class UnsupportedOperationError(StudyMindError):
    """An expected but not yet implemented operation was requested."""

    category = "unsupported"
    status_code = 422
    default_message = "This operation is not supported yet."


class MaterializationError(StudyMindError):
    """A planned item could not be stored in the library."""

    category = "materialization"
    status_code = 400
    default_message = "Failed to create content. Please try again later."


class NotFoundError(StudyMindError):
    category = "not_found"
    status_code = 404
    default_message = "Not found."
