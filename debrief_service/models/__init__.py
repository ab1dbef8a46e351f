"""Database models."""
from debrief_service.models.enums import DebriefTrigger, WeightUnit
from debrief_service.models.session_debrief import SessionDebrief
from debrief_service.models.workout import SessionExercise, WorkoutSession

__all__ = [
    "DebriefTrigger",
    "WeightUnit",
    "SessionDebrief",
    "SessionExercise",
    "WorkoutSession",
]
