"""
Lesson Generation Stream Models.

One model per event kind on the generation stream.  ``StreamEvent`` is
the discriminated union the decoder yields; the ``kind`` literal is the
discriminator.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class GenerationProgress(BaseModel):
    """One stage update of a running generation job."""

    step: str
    message: str = ""
    percentage: Optional[float] = None

    model_config = ConfigDict(extra="allow", frozen=True)


class ProgressEvent(BaseModel):
    kind: Literal["progress"] = "progress"
    progress: GenerationProgress


class CompleteEvent(BaseModel):
    kind: Literal["complete"] = "complete"
    result: Any


class ErrorEvent(BaseModel):
    kind: Literal["error"] = "error"
    error: str


StreamEvent = Annotated[
    Union[ProgressEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="kind"),
]
