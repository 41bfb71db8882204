"""Pydantic v2 models used by the template composer."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from stackforge.modules.models import MergeStrategy

# Rank of pre-existing file content: below every contribution.
EXISTING_RANK: tuple[int, int] = (-(10**9), -1)
EXISTING_OWNER = "<existing file>"


class Contribution(BaseModel):
    """One module's content for one target path."""
    module: str = Field(..., description="Contributing module")
    target_path: str = Field(..., description="Project-relative path")
    content: Union[str, dict[str, Any], list[Any]] = Field(
        ..., description="Rendered text or structured data"
    )
    priority: int = Field(default=0)
    merge_strategy: Optional[MergeStrategy] = Field(
        default=None, description="Declared override; None means use the file-type default"
    )
    order_index: int = Field(default=0, description="Position in resolution order")
    origin: str = Field(default="template", description="'template', 'generated' or 'existing'")

    @property
    def rank(self) -> tuple[int, int]:
        """Higher rank wins collisions: priority first, then later contributions."""
        if self.origin == "existing":
            return EXISTING_RANK
        return (self.priority, self.order_index)


class CompositionResult(BaseModel):
    """What the composer wrote and what went wrong, per path."""
    project_path: Path
    created: list[str] = Field(default_factory=list)
    merged: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict, description="Path -> failure message")
    discarded: dict[str, list[str]] = Field(
        default_factory=dict, description="Path -> modules whose replace content lost"
    )
    strategies: dict[str, MergeStrategy] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def written(self) -> list[str]:
        return sorted(self.created + self.merged)
