"""
Regulation Models
=================

Records returned by the regulation corpus.

Version: 0.1.0
"""

from pydantic import BaseModel, ConfigDict, Field


# Corpus function value marking a law whose primary function imposes a duty,
# as opposed to amending, defining, commencing or revoking other instruments.
DUTY_CREATING_FUNCTION = "Making"

IN_FORCE_STATUS = "In force"


class LawRecord(BaseModel):
    """A single law as returned by a regulation store preview query."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable law identifier")
    name: str
    title: str | None = None
    classification: str | None = Field(default=None, description="Regulation family")
    geo_extent: str | None = None
    status: str | None = None
    year: int | None = None
    description: str | None = None

    duty_holders: list[str] = Field(default_factory=list)
    functions: list[str] = Field(default_factory=list)

    @property
    def is_duty_creating(self) -> bool:
        """Whether this law creates an actionable duty."""
        return DUTY_CREATING_FUNCTION in self.functions
