"""Workout session tables read by the debrief context gatherer."""
from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from debrief_service.db.database import Base
from debrief_service.models.enums import WeightUnit


class WorkoutSession(Base):
    __tablename__ = "workout_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    template_name = Column(String(255), nullable=True)
    workout_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    exercises = relationship(
        "SessionExercise",
        back_populates="session",
        order_by="SessionExercise.set_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_workout_sessions_user_date", "user_id", "workout_date"),
    )


class SessionExercise(Base):
    """One logged set (or group of identical sets) of an exercise."""

    __tablename__ = "session_exercises"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("workout_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    exercise_name = Column(String(255), nullable=False)
    set_order = Column(Integer, nullable=False, default=0)
    weight = Column(Float, nullable=True)
    reps = Column(Integer, nullable=True)
    sets = Column(Integer, nullable=False, default=1)
    unit = Column(String(8), nullable=False, default=WeightUnit.KG.value)

    session = relationship("WorkoutSession", back_populates="exercises")

    __table_args__ = (
        Index("ix_session_exercises_user_name", "user_id", "exercise_name"),
    )
