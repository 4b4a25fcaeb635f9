"""
Database Models
SQLAlchemy ORM models for PillMind
"""

from sqlalchemy import Column, Integer, String, Boolean, Float, DateTime, ForeignKey, Text, Date, Enum, Index, UniqueConstraint, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum as PyEnum

from database import Base


# ==================== ENUMS ====================

class Weekday(str, PyEnum):
    """Day of week, Monday first"""
    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"
    SAT = "SAT"
    SUN = "SUN"


WEEKDAYS = [
    Weekday.MON, Weekday.TUE, Weekday.WED, Weekday.THU,
    Weekday.FRI, Weekday.SAT, Weekday.SUN
]


class DoseStatus(str, PyEnum):
    """Lifecycle state of a dose instance"""
    SCHEDULED = "SCHEDULED"
    TAKEN = "TAKEN"
    SKIPPED = "SKIPPED"
    MISSED = "MISSED"


class Unit(str, PyEnum):
    """Dose and inventory units"""
    MG = "MG"
    MCG = "MCG"
    G = "G"
    ML = "ML"
    IU = "IU"
    DROP = "DROP"
    PUFF = "PUFF"
    UNIT = "UNIT"
    TAB = "TAB"
    CAPS = "CAPS"


class MedForm(str, PyEnum):
    """Pharmaceutical form"""
    TABLET = "TABLET"
    CAPSULE = "CAPSULE"
    LIQUID = "LIQUID"
    INJECTION = "INJECTION"
    INHALER = "INHALER"
    TOPICAL = "TOPICAL"
    DROPS = "DROPS"
    OTHER = "OTHER"


class TimeFormat(str, PyEnum):
    """Display preference only; never affects scheduling"""
    H12 = "H12"
    H24 = "H24"


class Channel(str, PyEnum):
    """Notification channels"""
    PUSH = "PUSH"
    EMAIL = "EMAIL"
    SMS = "SMS"


class NotificationStatus(str, PyEnum):
    """Outcome of a single notification attempt"""
    SENT = "SENT"
    FAILED = "FAILED"


# ==================== MODELS ====================

class User(Base):
    """Account owner; authentication lives outside the dose engine"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True)
    name = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    settings = relationship("UserSettings", back_populates="user", uselist=False, cascade="all, delete-orphan")
    medications = relationship("Medication", back_populates="user", cascade="all, delete-orphan")
    prescriptions = relationship("Prescription", back_populates="user", cascade="all, delete-orphan")
    push_subscriptions = relationship("PushSubscription", back_populates="user", cascade="all, delete-orphan")


class UserSettings(Base):
    """Per-user preferences; timezone drives missed detection and display"""
    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    timezone = Column(String(64), nullable=False, default="UTC")
    time_format = Column(Enum(TimeFormat), nullable=False, default=TimeFormat.H24)
    default_channels = Column(JSON, default=lambda: [Channel.EMAIL.value])

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="settings")

    @property
    def channels(self) -> list:
        """Default channels as a deduplicated list of Channel values"""
        seen = []
        for value in self.default_channels or []:
            channel = Channel(value)
            if channel not in seen:
                seen.append(channel)
        return seen


class Medication(Base):
    """A drug the user keeps track of"""
    __tablename__ = "medications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    name = Column(String(255), nullable=False)
    brand_name = Column(String(255))
    form = Column(Enum(MedForm), default=MedForm.TABLET)
    strength_value = Column(Float)
    strength_unit = Column(Enum(Unit))
    notes = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="medications")
    inventory = relationship("Inventory", back_populates="medication", uselist=False, cascade="all, delete-orphan")
    prescriptions = relationship("Prescription", back_populates="medication", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_medications_user", "user_id"),
    )


class Inventory(Base):
    """Remaining supply of one medication"""
    __tablename__ = "inventory"

    id = Column(Integer, primary_key=True, index=True)
    medication_id = Column(Integer, ForeignKey("medications.id", ondelete="CASCADE"), unique=True, nullable=False)

    current_qty = Column(Float, nullable=False, default=0)
    unit = Column(Enum(Unit), nullable=False, default=Unit.TAB)
    low_threshold = Column(Float)
    last_restocked_at = Column(DateTime)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    medication = relationship("Medication", back_populates="inventory")


class CareProvider(Base):
    """Prescriber or clinic contact"""
    __tablename__ = "care_providers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(50))
    clinic = Column(String(255))


class Prescription(Base):
    """Links a medication to a user; bounds every schedule it owns"""
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    medication_id = Column(Integer, ForeignKey("medications.id", ondelete="CASCADE"), nullable=False)
    provider_id = Column(Integer, ForeignKey("care_providers.id", ondelete="SET NULL"))

    indication = Column(String(255))
    as_needed = Column(Boolean, nullable=False, default=False)  # PRN: never materialized
    max_daily_dose = Column(Float)
    instructions = Column(Text)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="prescriptions")
    medication = relationship("Medication", back_populates="prescriptions")
    provider = relationship("CareProvider")
    schedules = relationship("Schedule", back_populates="prescription", cascade="all, delete-orphan")
    dose_logs = relationship("DoseLog", back_populates="prescription", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_prescriptions_user", "user_id"),
    )


class Schedule(Base):
    """Recurring weekly dosing rule, expressed in its own timezone"""
    __tablename__ = "schedules"

    id = Column(Integer, primary_key=True, index=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id", ondelete="CASCADE"), nullable=False)

    timezone = Column(String(64), nullable=False, default="UTC")
    days_of_week = Column(JSON, nullable=False, default=list)  # ["MON", "WED"]
    times = Column(JSON, nullable=False, default=list)  # ["08:00", "20:00"]

    dose_quantity = Column(Float)
    dose_unit = Column(Enum(Unit))

    # Calendar dates in the schedule's timezone, inclusive
    start_date = Column(Date)
    end_date = Column(Date)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    prescription = relationship("Prescription", back_populates="schedules")
    dose_logs = relationship("DoseLog", back_populates="schedule", passive_deletes=True)

    __table_args__ = (
        Index("ix_schedules_prescription", "prescription_id"),
    )


class DoseLog(Base):
    """One expected or recorded medication event"""
    __tablename__ = "dose_logs"

    id = Column(Integer, primary_key=True, index=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id", ondelete="CASCADE"), nullable=False)
    schedule_id = Column(Integer, ForeignKey("schedules.id", ondelete="SET NULL"))

    scheduled_for = Column(DateTime, nullable=False)  # naive UTC, moves on snooze or edit
    slot_for = Column(DateTime, nullable=False)  # naive UTC, the recurrence instant; never changes
    taken_at = Column(DateTime)  # naive UTC, only while TAKEN
    status = Column(Enum(DoseStatus), nullable=False, default=DoseStatus.SCHEDULED)

    # Snapshot taken from the schedule at creation time
    quantity = Column(Float)
    unit = Column(Enum(Unit))
    notes = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    prescription = relationship("Prescription", back_populates="dose_logs")
    schedule = relationship("Schedule", back_populates="dose_logs")
    notifications = relationship("NotificationLog", back_populates="dose_log", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("prescription_id", "schedule_id", "slot_for", name="uq_dose_instance"),
        Index("ix_dose_logs_prescription_scheduled", "prescription_id", "scheduled_for"),
        Index("ix_dose_logs_schedule_status_scheduled", "schedule_id", "status", "scheduled_for"),
    )


class NotificationLog(Base):
    """Outcome of one notification attempt on one channel"""
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    dose_log_id = Column(Integer, ForeignKey("dose_logs.id", ondelete="SET NULL"))

    channel = Column(Enum(Channel), nullable=False)
    status = Column(Enum(NotificationStatus), nullable=False)
    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    meta = Column(JSON, default=dict)

    dose_log = relationship("DoseLog", back_populates="notifications")

    __table_args__ = (
        Index("ix_notification_logs_user_dose", "user_id", "dose_log_id", "status"),
    )


class PushSubscription(Base):
    """Web Push endpoint registered by one of the user's devices"""
    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    endpoint = Column(String(1024), unique=True, nullable=False)
    p256dh = Column(String(255), nullable=False)
    auth = Column(String(255), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="push_subscriptions")
