"""
Debrief context gathering.

Reads a completed workout session plus the athlete's recent history and
condenses it into the payload the debrief prompt is built from:
per-exercise snapshots with PR detection, adherence over the last 7/28 days,
training streak, and the currently active debrief (so a regeneration can
avoid repeating itself). Read-only and idempotent.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Iterable

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import and_, desc, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from debrief_service.core.exceptions import NotFoundError
from debrief_service.core.logging import get_logger
from debrief_service.models.enums import WeightUnit
from debrief_service.models.session_debrief import SessionDebrief
from debrief_service.models.workout import SessionExercise, WorkoutSession
from debrief_service.repositories.session_debrief_repository import SessionDebriefRepository
from debrief_service.schemas.debrief import (
    AdherenceSnapshot,
    DebriefContextPayload,
    DebriefExerciseSet,
    ExerciseSnapshot,
    PreviousBest,
    SessionDebriefContent,
    SessionDebriefContext,
    StreakSnapshot,
)

logger = get_logger(__name__)

HISTORY_SET_LIMIT = 200
ADHERENCE_SESSION_LIMIT = 90
TARGET_SESSIONS_PER_WEEK = 3


def estimate_one_rm(weight: float | None, reps: int | None) -> float | None:
    """Epley estimate; a single rep is the lift itself."""
    if not weight or not reps:
        return None
    if reps == 1:
        return float(weight)
    return round(weight * (1 + reps / 30), 2)


def _to_set(row: SessionExercise) -> DebriefExerciseSet:
    sets = row.sets or 1
    reps = row.reps
    weight = row.weight
    return DebriefExerciseSet(
        set_order=row.set_order or 0,
        weight=weight,
        reps=reps,
        sets=sets,
        unit=WeightUnit.LBS.value if row.unit == WeightUnit.LBS.value else WeightUnit.KG.value,
        volume=float(sets * (reps or 0) * (weight or 0)),
    )


def build_exercise_snapshot(
    exercise_name: str,
    sets: list[DebriefExerciseSet],
    history: list[DebriefExerciseSet],
) -> ExerciseSnapshot:
    sets = sorted(sets, key=lambda s: s.set_order)
    best_set = max((s for s in sets if s.weight is not None), key=lambda s: s.weight, default=None)
    best_volume = max((s.volume for s in sets), default=0.0)
    one_rms = [rm for rm in (estimate_one_rm(s.weight, s.reps) for s in sets) if rm is not None]
    best_one_rm = max(one_rms, default=None)

    previous = PreviousBest()
    pr_flags = []
    if history:
        history_one_rms = [rm for rm in (estimate_one_rm(s.weight, s.reps) for s in history) if rm is not None]
        previous = PreviousBest(
            volume=max(s.volume for s in history),
            best_weight=max((s.weight for s in history if s.weight is not None), default=None),
            estimated_one_rm=max(history_one_rms, default=None),
        )
        if best_set and previous.best_weight and best_set.weight > previous.best_weight:
            pr_flags.append("weight")
        if previous.volume and best_volume > previous.volume:
            pr_flags.append("volume")
        if best_one_rm and previous.estimated_one_rm and best_one_rm > previous.estimated_one_rm:
            pr_flags.append("oneRM")

    return ExerciseSnapshot(
        exercise_name=exercise_name,
        total_volume=sum(s.volume for s in sets),
        estimated_one_rm=best_one_rm,
        best_weight=best_set.weight if best_set else None,
        best_reps=best_set.reps if best_set else None,
        sets=sets,
        pr_flags=pr_flags,
        previous_best=previous,
    )


def calculate_streak(workout_dates: Iterable[datetime], reference: date) -> StreakSnapshot:
    """
    Consecutive training days.

    ``current`` counts back from the most recent workout and is 0 unless that
    workout was on ``reference`` or the day before it.
    """
    days = sorted({d.date() for d in workout_dates}, reverse=True)
    if not days:
        return StreakSnapshot()

    longest = run = 1
    for newer, older in zip(days, days[1:]):
        if newer - older == timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)

    current = 0
    if reference - days[0] <= timedelta(days=1):
        current = 1
        for newer, older in zip(days, days[1:]):
            if newer - older != timedelta(days=1):
                break
            current += 1

    return StreakSnapshot(current=current, longest=longest, last_workout_date=days[0].isoformat())


def _previous_debrief_content(debrief: SessionDebrief | None) -> SessionDebriefContent | None:
    if debrief is None:
        return None
    try:
        return SessionDebriefContent.model_validate(
            {
                "summary": debrief.summary,
                "prHighlights": debrief.pr_highlights,
                "adherenceScore": debrief.adherence_score,
                "focusAreas": debrief.focus_areas,
                "streakContext": debrief.streak_context,
                "overloadDigest": debrief.overload_digest,
                "metadata": debrief.debrief_metadata,
            }
        )
    except PydanticValidationError:
        logger.warning("session_debrief.previous_content_invalid", debrief_id=debrief.id)
        return None


async def gather_session_debrief_context(
    db: AsyncSession,
    user_id: str,
    session_id: int,
    locale: str | None = None,
    timezone: str | None = None,
) -> DebriefContextPayload:
    """Build the generation payload for one session owned by ``user_id``."""
    result = await db.execute(
        select(WorkoutSession)
        .options(selectinload(WorkoutSession.exercises))
        .where(WorkoutSession.id == session_id)
    )
    session = result.scalar_one_or_none()
    if session is None or session.user_id != user_id:
        raise NotFoundError("workout_session", "Workout session not found", {"session_id": session_id})

    session_date = session.workout_date or datetime.utcnow()
    exercise_names = list(dict.fromkeys(row.exercise_name for row in session.exercises))

    history: dict[str, list[DebriefExerciseSet]] = defaultdict(list)
    if exercise_names:
        history_rows = await db.execute(
            select(SessionExercise)
            .join(WorkoutSession, SessionExercise.session_id == WorkoutSession.id)
            .where(
                and_(
                    SessionExercise.user_id == user_id,
                    SessionExercise.exercise_name.in_(exercise_names),
                    SessionExercise.session_id != session_id,
                    WorkoutSession.workout_date <= session_date,
                )
            )
            .order_by(desc(WorkoutSession.workout_date))
            .limit(HISTORY_SET_LIMIT)
        )
        for row in history_rows.scalars().all():
            history[row.exercise_name].append(_to_set(row))

    grouped: dict[str, list[DebriefExerciseSet]] = defaultdict(list)
    for row in session.exercises:
        grouped[row.exercise_name].append(_to_set(row))

    snapshots = [
        build_exercise_snapshot(name, grouped[name], history.get(name, []))
        for name in exercise_names
    ]

    adherence_result = await db.execute(
        select(WorkoutSession.workout_date)
        .where(
            and_(
                WorkoutSession.user_id == user_id,
                WorkoutSession.workout_date <= session_date,
            )
        )
        .order_by(desc(WorkoutSession.workout_date))
        .limit(ADHERENCE_SESSION_LIMIT)
    )
    workout_dates = [d for d in adherence_result.scalars().all() if d is not None]
    seven_days_ago = session_date - timedelta(days=6)
    twenty_eight_days_ago = session_date - timedelta(days=27)
    last_7 = sum(1 for d in workout_dates if d.date() >= seven_days_ago.date())
    last_28 = sum(1 for d in workout_dates if d.date() >= twenty_eight_days_ago.date())
    weekly_frequency = last_28 / 4

    active = await SessionDebriefRepository(db).get_active(user_id, session_id)

    context = SessionDebriefContext(
        session_id=session_id,
        session_date=session_date.isoformat(),
        template_name=(session.template_name or "").strip() or "Workout",
        total_exercises=len(snapshots),
        total_volume=sum(s.total_volume for s in snapshots),
        exercises=snapshots,
        pr_highlights=[s for s in snapshots if s.pr_flags],
        adherence=AdherenceSnapshot(
            sessions_last_7_days=last_7,
            sessions_last_28_days=last_28,
            weekly_frequency=round(weekly_frequency, 2),
            rolling_compliance=round(min(1.0, weekly_frequency / TARGET_SESSIONS_PER_WEEK) * 100),
        ),
        streak=calculate_streak(workout_dates, session_date.date()),
        previous_debrief=_previous_debrief_content(active),
    )

    return DebriefContextPayload(context=context, locale=locale or "en-US", timezone=timezone)
