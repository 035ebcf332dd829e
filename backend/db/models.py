from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Boolean, Index,
    DateTime,
)
from db.database import Base


class BehaviorEventRecord(Base):
    __tablename__ = "behavior_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    occurred_at = Column(DateTime, nullable=False, default=datetime.now)
    action_key = Column(Text, nullable=False)
    domain = Column(Text, nullable=False, default="general")
    surface = Column(Text, nullable=False, default="system")
    outcome = Column(Text, nullable=False, default="performed")
    related_entity_id = Column(Text)
    metadata_json = Column(Text)  # JSON object of string -> string
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_behavior_events_occurred_at", "occurred_at"),
        Index("ix_behavior_events_action_key", "action_key", "occurred_at"),
    )


class ReminderCompletionRecord(Base):
    __tablename__ = "reminder_completions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reminder_id = Column(Text, nullable=False)
    completed_at = Column(DateTime, nullable=False)
    was_on_time = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_reminder_completions_reminder", "reminder_id", "completed_at"),
    )


class PulseStateEntry(Base):
    __tablename__ = "pulse_state"

    key = Column(Text, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
