"""Schemas for debrief content, generation context and the debrief API.

Model output and the generation context use camelCase on the wire; the
pydantic models expose snake_case attributes and accept either form.
"""
from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Generated content contract
# ---------------------------------------------------------------------------

class PRHighlight(CamelModel):
    exercise_name: str = Field(min_length=1)
    metric: Literal["weight", "volume", "oneRM"]
    summary: str = Field(min_length=1)
    delta: float | None = None
    unit: Literal["kg", "lbs"] | None = None
    current_value: float | None = None
    previous_value: float | None = None
    emoji: str | None = Field(default=None, max_length=16)


class FocusArea(CamelModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    priority: Literal["today", "upcoming", "ongoing"] | None = None
    actions: list[str] = Field(default_factory=list)


class StreakContext(CamelModel):
    current: int = Field(ge=0)
    longest: int = Field(ge=0)
    message: str
    status: Literal["building", "maintaining", "broken", "new"] | None = None


class OverloadDigest(CamelModel):
    readiness: float | None = Field(default=None, ge=0, le=100)
    recommendation: str
    next_steps: list[str] = Field(default_factory=list)
    caution_flags: list[str] = Field(default_factory=list)


class SessionDebriefContent(CamelModel):
    """What the model must return, after JSON parsing."""

    summary: str = Field(min_length=1)
    pr_highlights: list[PRHighlight] | None = None
    adherence_score: float | None = Field(default=None, ge=0, le=100)
    focus_areas: list[FocusArea] | None = None
    streak_context: StreakContext | None = None
    overload_digest: OverloadDigest | None = None
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Generation context
# ---------------------------------------------------------------------------

class DebriefExerciseSet(CamelModel):
    set_order: int
    weight: float | None = None
    reps: int | None = None
    sets: int = 1
    unit: Literal["kg", "lbs"] = "kg"
    volume: float = 0.0


class PreviousBest(CamelModel):
    volume: float | None = None
    best_weight: float | None = None
    estimated_one_rm: float | None = None


class ExerciseSnapshot(CamelModel):
    exercise_name: str
    total_volume: float
    estimated_one_rm: float | None = None
    best_weight: float | None = None
    best_reps: int | None = None
    sets: list[DebriefExerciseSet]
    pr_flags: list[Literal["weight", "volume", "oneRM"]] = Field(default_factory=list)
    previous_best: PreviousBest = Field(default_factory=PreviousBest)


class AdherenceSnapshot(CamelModel):
    sessions_last_7_days: int
    sessions_last_28_days: int
    weekly_frequency: float
    rolling_compliance: int


class StreakSnapshot(CamelModel):
    current: int = 0
    longest: int = 0
    last_workout_date: str | None = None


class SessionDebriefContext(CamelModel):
    session_id: int
    session_date: str
    template_name: str = "Workout"
    total_exercises: int
    total_volume: float
    exercises: list[ExerciseSnapshot] = Field(default_factory=list)
    pr_highlights: list[ExerciseSnapshot] = Field(default_factory=list)
    adherence: AdherenceSnapshot
    streak: StreakSnapshot
    previous_debrief: SessionDebriefContent | None = None


class DebriefContextPayload(CamelModel):
    context: SessionDebriefContext
    locale: str = "en-US"
    timezone: str | None = None


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

class GenerateDebriefRequest(CamelModel):
    session_id: int = Field(gt=0)
    locale: str | None = None
    timezone: str | None = None
    skip_if_active: bool = False


class BulkGenerateDebriefRequest(CamelModel):
    session_ids: list[int] = Field(max_length=50)
    locale: str | None = None
    timezone: str | None = None
    skip_if_active: bool = False


class DebriefInteractionRequest(CamelModel):
    session_id: int = Field(gt=0)
    debrief_id: int | None = Field(default=None, gt=0)


class UpdateDebriefMetadataRequest(DebriefInteractionRequest):
    metadata: dict[str, Any]


class SessionDebriefResponse(BaseModel):
    id: int
    user_id: str
    session_id: int
    version: int
    parent_debrief_id: int | None
    summary: str
    pr_highlights: list[dict[str, Any]] | None = None
    adherence_score: float | None = None
    focus_areas: list[dict[str, Any]] | None = None
    streak_context: dict[str, Any] | None = None
    overload_digest: dict[str, Any] | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("debrief_metadata", "metadata"),
    )
    is_active: bool
    regeneration_count: int
    viewed_at: datetime | None = None
    dismissed_at: datetime | None = None
    pinned_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class GenerateDebriefResponse(BaseModel):
    debrief: SessionDebriefResponse
    content: SessionDebriefContent | None = None


class BulkDebriefErrorResponse(BaseModel):
    session_id: int
    error: str
    retryable: bool = False


class BulkGenerateDebriefResponse(BaseModel):
    debriefs: list[SessionDebriefResponse]
    errors: list[BulkDebriefErrorResponse]
    skipped: list[int] = Field(default_factory=list)
