"""
precinct.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- users                 — Discord-authenticated accounts (snowflake PK)
- roles / permissions   — Dashboard roles and the dotted permission catalogue
- employees             — Department personnel record (1:1 with a user)
- absences              — Leave of absence / day-off entries
- sanctions             — Disciplinary warnings, fines and measures
- investigations        — Internal Affairs cases (+ notes, witnesses)
- evidence              — Evidence locker items
- treasury              — Single-row department cash balance (+ transactions)
- training_types / trainings / training_participants — Academy schedule
- announcements         — Discord announcements drafted in the dashboard
- calendar_events       — Department calendar with Discord reminders
- notifications         — Per-user inbox
- bonus_configs / bonus_payments / bonus_weeks — Weekly bonus accrual
- applications / blacklist — Recruitment pipeline
- uprank_requests / uprank_locks — Team-lead promotion requests and promotion holds
- academy_modules / academy_progress / academy_exams / academy_retrainings — Academy curriculum
- unit_reviews          — Quality Assurance reviews of units
- detective_cases       — Detective case files
- robbery_reports / tuning_reports — Field reports
- leadership_notes / leadership_tasks — Leadership board
- audit_logs            — Append-only request audit trail
- admin_log             — Before/after snapshots for admin mutations
- settings              — Runtime key/value configuration
- oauth_states / rate_limit_events — Auth and throttling state
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Precinct ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class EmployeeStatus(enum.StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    TERMINATED = "TERMINATED"


class AbsenceType(enum.StrEnum):
    ABSENCE = "ABSENCE"
    DAY_OFF = "DAY_OFF"


class SanctionStatus(enum.StrEnum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class InvestigationStatus(enum.StrEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    CLOSED = "CLOSED"
    ARCHIVED = "ARCHIVED"


class Priority(enum.StrEnum):
    """Shared by investigations and announcements."""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class InvestigationCategory(enum.StrEnum):
    COMPLAINT = "COMPLAINT"
    MISCONDUCT = "MISCONDUCT"
    CORRUPTION = "CORRUPTION"
    USE_OF_FORCE = "USE_OF_FORCE"
    OTHER = "OTHER"


class EvidenceStatus(enum.StrEnum):
    STORED = "STORED"
    CHECKED_OUT = "CHECKED_OUT"
    RELEASED = "RELEASED"
    DESTROYED = "DESTROYED"


class EvidenceCategory(enum.StrEnum):
    WEAPON = "WEAPON"
    DRUGS = "DRUGS"
    MONEY = "MONEY"
    VEHICLE = "VEHICLE"
    DOCUMENT = "DOCUMENT"
    OTHER = "OTHER"


class MoneyType(enum.StrEnum):
    REGULAR = "REGULAR"
    BLACK = "BLACK"


class TransactionType(enum.StrEnum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


class TrainingStatus(enum.StrEnum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ParticipantStatus(enum.StrEnum):
    REGISTERED = "REGISTERED"
    ATTENDED = "ATTENDED"
    NO_SHOW = "NO_SHOW"
    EXCUSED = "EXCUSED"


class AnnouncementStatus(enum.StrEnum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"


class CalendarCategory(enum.StrEnum):
    GENERAL = "GENERAL"
    TRAINING = "TRAINING"
    MEETING = "MEETING"
    EVENT = "EVENT"
    DEADLINE = "DEADLINE"


class NotificationType(enum.StrEnum):
    PROMOTION = "PROMOTION"
    DEMOTION = "DEMOTION"
    SANCTION = "SANCTION"
    BONUS = "BONUS"
    TUNING = "TUNING"
    UNIT_CHANGE = "UNIT_CHANGE"
    UNIT_PROMOTION = "UNIT_PROMOTION"
    CALENDAR = "CALENDAR"
    GENERAL = "GENERAL"


class BonusPaymentStatus(enum.StrEnum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class BonusWeekStatus(enum.StrEnum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    PAID = "PAID"


class ApplicationStatus(enum.StrEnum):
    PENDING = "PENDING"
    INTERVIEW = "INTERVIEW"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class RequestStatus(enum.StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CaseStatus(enum.StrEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    CLOSED = "CLOSED"


class TuningStatus(enum.StrEnum):
    OPEN = "OPEN"
    COMPLETED = "COMPLETED"


class TaskStatus(enum.StrEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class ReviewStatus(enum.StrEnum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    REVIEWED = "REVIEWED"


class ModuleCategory(enum.StrEnum):
    JUNIOR_OFFICER = "JUNIOR_OFFICER"
    OFFICER = "OFFICER"


class RetrainingStatus(enum.StrEnum):
    OPEN = "OPEN"
    COMPLETED = "COMPLETED"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# ---------------------------------------------------------------------------
# Association tables
# ---------------------------------------------------------------------------
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


# ---------------------------------------------------------------------------
# Users — one row per Discord account that has logged in or been synced
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)  # Discord snowflake
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(100), default=None)
    avatar: Mapped[str | None] = mapped_column(String(255), default=None)
    email: Mapped[str | None] = mapped_column(String(255), default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    roles: Mapped[list[Role]] = relationship(secondary=user_roles, back_populates="users")
    employee: Mapped[Employee | None] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    @property
    def name(self) -> str:
        return self.display_name or self.username

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} active={self.is_active}>"


# ---------------------------------------------------------------------------
# Roles & permissions
# ---------------------------------------------------------------------------
class Role(Base):
    """Dashboard role.

    ``level`` drives minimum-rank gates; ``discord_role_id`` links the role
    to a guild role so first-time logins inherit it automatically.
    """
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str] = mapped_column(String(20), default="#6b7280")
    level: Mapped[int] = mapped_column(Integer, default=0)
    discord_role_id: Mapped[str | None] = mapped_column(String(32), default=None)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    permissions: Mapped[list[Permission]] = relationship(
        secondary=role_permissions, back_populates="roles"
    )
    users: Mapped[list[User]] = relationship(secondary=user_roles, back_populates="roles")

    def __repr__(self) -> str:
        return f"<Role id={self.id} name={self.name!r} level={self.level}>"


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")

    roles: Mapped[list[Role]] = relationship(
        secondary=role_permissions, back_populates="permissions"
    )

    def __repr__(self) -> str:
        return f"<Permission {self.name!r}>"


# ---------------------------------------------------------------------------
# Employees — department personnel record
# ---------------------------------------------------------------------------
class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    badge_number: Mapped[str | None] = mapped_column(String(20), default=None, unique=True)
    rank: Mapped[str] = mapped_column(String(100), nullable=False, default="Cadet")
    rank_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    department: Mapped[str] = mapped_column(String(255), nullable=False, default="Patrol")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=EmployeeStatus.ACTIVE)
    hire_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped[User] = relationship(back_populates="employee")
    absences: Mapped[list[Absence]] = relationship(
        back_populates="employee", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_employees_rank_level", "rank_level"),
        Index("ix_employees_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Employee id={self.id} rank={self.rank!r} lvl={self.rank_level}>"


# ---------------------------------------------------------------------------
# Absences
# ---------------------------------------------------------------------------
class Absence(Base):
    __tablename__ = "absences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False, default=AbsenceType.ABSENCE)
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    employee: Mapped[Employee] = relationship(back_populates="absences")

    __table_args__ = (
        Index("ix_absences_employee_start", "employee_id", "start_date"),
    )

    def __repr__(self) -> str:
        return f"<Absence id={self.id} employee={self.employee_id} type={self.type}>"


# ---------------------------------------------------------------------------
# Sanctions
# ---------------------------------------------------------------------------
class Sanction(Base):
    __tablename__ = "sanctions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False
    )
    has_warning: Mapped[bool] = mapped_column(Boolean, default=False)
    has_fine: Mapped[bool] = mapped_column(Boolean, default=False)
    has_measure: Mapped[bool] = mapped_column(Boolean, default=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[int | None] = mapped_column(Integer, default=None)
    measure: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SanctionStatus.ACTIVE)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    issued_by_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    employee: Mapped[Employee] = relationship()
    issued_by: Mapped[User] = relationship()

    def __repr__(self) -> str:
        return f"<Sanction id={self.id} employee={self.employee_id} status={self.status}>"


# ---------------------------------------------------------------------------
# Investigations — Internal Affairs
# ---------------------------------------------------------------------------
class Investigation(Base):
    __tablename__ = "investigations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvestigationStatus.OPEN
    )
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=Priority.NORMAL)
    category: Mapped[str] = mapped_column(
        String(30), nullable=False, default=InvestigationCategory.COMPLAINT
    )
    accused_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="SET NULL"), default=None
    )
    complainant: Mapped[str | None] = mapped_column(String(200), default=None)
    lead_investigator_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    findings: Mapped[str | None] = mapped_column(Text, default=None)
    conclusion: Mapped[str | None] = mapped_column(Text, default=None)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    accused: Mapped[Employee | None] = relationship()
    lead_investigator: Mapped[User] = relationship()
    notes: Mapped[list[InvestigationNote]] = relationship(
        back_populates="investigation", cascade="all, delete-orphan"
    )
    witnesses: Mapped[list[InvestigationWitness]] = relationship(
        back_populates="investigation", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Investigation {self.case_number} status={self.status}>"


class InvestigationNote(Base):
    __tablename__ = "investigation_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    investigation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("investigations.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_confidential: Mapped[bool] = mapped_column(Boolean, default=False)
    author_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    investigation: Mapped[Investigation] = relationship(back_populates="notes")
    author: Mapped[User] = relationship()


class InvestigationWitness(Base):
    __tablename__ = "investigation_witnesses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    investigation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("investigations.id", ondelete="CASCADE"), nullable=False
    )
    employee_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="SET NULL"), default=None
    )
    external_name: Mapped[str | None] = mapped_column(String(200), default=None)
    statement: Mapped[str | None] = mapped_column(Text, default=None)
    interviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    investigation: Mapped[Investigation] = relationship(back_populates="witnesses")
    employee: Mapped[Employee | None] = relationship()


# ---------------------------------------------------------------------------
# Evidence locker
# ---------------------------------------------------------------------------
class Evidence(Base):
    __tablename__ = "evidence"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str] = mapped_column(String(20), nullable=False, default=EvidenceCategory.OTHER)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    location: Mapped[str | None] = mapped_column(String(200), default=None)
    case_number: Mapped[str | None] = mapped_column(String(50), default=None)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=EvidenceStatus.STORED)
    stored_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    released_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), default=None
    )
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    stored_by: Mapped[User] = relationship(foreign_keys=[stored_by_id])
    released_by: Mapped[User | None] = relationship(foreign_keys=[released_by_id])

    def __repr__(self) -> str:
        return f"<Evidence id={self.id} name={self.name!r} status={self.status}>"


# ---------------------------------------------------------------------------
# Treasury — single row + transaction journal
# ---------------------------------------------------------------------------
class Treasury(Base):
    __tablename__ = "treasury"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    regular_cash: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    black_money: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Treasury regular={self.regular_cash} black={self.black_money}>"


class TreasuryTransaction(Base):
    __tablename__ = "treasury_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    money_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    created_by: Mapped[User] = relationship()

    __table_args__ = (
        Index("ix_treasury_transactions_created", "created_at"),
    )


# ---------------------------------------------------------------------------
# Academy — training types, sessions, participants
# ---------------------------------------------------------------------------
class TrainingType(Base):
    __tablename__ = "training_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    duration: Mapped[int] = mapped_column(Integer, default=60)  # minutes
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<TrainingType {self.name!r}>"


class Training(Base):
    __tablename__ = "trainings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("training_types.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location: Mapped[str | None] = mapped_column(String(200), default=None)
    max_participants: Mapped[int | None] = mapped_column(Integer, default=None)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TrainingStatus.SCHEDULED
    )
    instructor_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    type: Mapped[TrainingType] = relationship()
    instructor: Mapped[User] = relationship()
    participants: Mapped[list[TrainingParticipant]] = relationship(
        back_populates="training", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Training id={self.id} title={self.title!r} status={self.status}>"


class TrainingParticipant(Base):
    __tablename__ = "training_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    training_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False
    )
    employee_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ParticipantStatus.REGISTERED
    )
    grade: Mapped[str | None] = mapped_column(String(20), default=None)
    feedback: Mapped[str | None] = mapped_column(Text, default=None)
    attended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    training: Mapped[Training] = relationship(back_populates="participants")
    employee: Mapped[Employee] = relationship()

    __table_args__ = (
        UniqueConstraint("training_id", "employee_id", name="uq_training_participant"),
    )


# ---------------------------------------------------------------------------
# Announcements
# ---------------------------------------------------------------------------
class Announcement(Base):
    __tablename__ = "announcements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=Priority.NORMAL)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AnnouncementStatus.DRAFT
    )
    channel_id: Mapped[str | None] = mapped_column(String(32), default=None)
    author_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    author: Mapped[User] = relationship()

    def __repr__(self) -> str:
        return f"<Announcement id={self.id} status={self.status}>"


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------
class CalendarEvent(Base):
    __tablename__ = "calendar_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    location: Mapped[str | None] = mapped_column(String(200), default=None)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    all_day: Mapped[bool] = mapped_column(Boolean, default=False)
    color: Mapped[str] = mapped_column(String(20), default="#3b82f6")
    category: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CalendarCategory.GENERAL
    )
    discord_role_ids: Mapped[list | None] = mapped_column(JSONB, default=list)
    notify_employee_ids: Mapped[list | None] = mapped_column(JSONB, default=list)
    reminder_minutes: Mapped[int | None] = mapped_column(Integer, default=None)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    created_by: Mapped[User] = relationship()

    __table_args__ = (
        Index("ix_calendar_events_start", "start_date"),
    )

    def __repr__(self) -> str:
        return f"<CalendarEvent id={self.id} title={self.title!r}>"


# ---------------------------------------------------------------------------
# Notifications — per-user inbox
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type}>"


# ---------------------------------------------------------------------------
# Bonus accrual
# ---------------------------------------------------------------------------
class BonusConfig(Base):
    __tablename__ = "bonus_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str] = mapped_column(String(30), nullable=False, default="GENERAL")
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<BonusConfig {self.activity_type} amount={self.amount} active={self.is_active}>"


class BonusPayment(Base):
    __tablename__ = "bonus_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    config_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bonus_configs.id"), nullable=False
    )
    employee_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    reference_id: Mapped[str | None] = mapped_column(String(64), default=None)
    reference_type: Mapped[str | None] = mapped_column(String(50), default=None)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BonusPaymentStatus.PENDING
    )
    week_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    week_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    paid_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    config: Mapped[BonusConfig] = relationship()
    employee: Mapped[Employee] = relationship()

    __table_args__ = (
        Index("ix_bonus_payments_week", "week_start", "week_end", "status"),
        Index("ix_bonus_payments_employee", "employee_id"),
    )

    def __repr__(self) -> str:
        return f"<BonusPayment id={self.id} employee={self.employee_id} amount={self.amount}>"


class BonusWeek(Base):
    __tablename__ = "bonus_weeks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    week_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    week_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BonusWeekStatus.OPEN
    )
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    submitted_to_management: Mapped[bool] = mapped_column(Boolean, default=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    __table_args__ = (
        UniqueConstraint("week_start", "week_end", name="uq_bonus_weeks_bounds"),
    )

    def __repr__(self) -> str:
        return f"<BonusWeek {self.week_start:%Y-%m-%d} status={self.status} total={self.total_amount}>"


# ---------------------------------------------------------------------------
# Recruitment — applications & blacklist
# ---------------------------------------------------------------------------
class Application(Base):
    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_id: Mapped[str] = mapped_column(String(32), nullable=False)
    discord_username: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ApplicationStatus.PENDING
    )
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    interview_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    interview_notes: Mapped[str | None] = mapped_column(Text, default=None)
    rejection_reason: Mapped[str | None] = mapped_column(Text, default=None)
    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    processed_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), default=None
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    created_by: Mapped[User] = relationship(foreign_keys=[created_by_id])
    processed_by: Mapped[User | None] = relationship(foreign_keys=[processed_by_id])

    __table_args__ = (
        Index("ix_applications_discord_status", "discord_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Application id={self.id} discord={self.discord_id} status={self.status}>"


class BlacklistEntry(Base):
    __tablename__ = "blacklist"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discord_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    added_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    added_by: Mapped[User] = relationship()

    def __repr__(self) -> str:
        return f"<BlacklistEntry discord={self.discord_id}>"


# ---------------------------------------------------------------------------
# Uprank requests
# ---------------------------------------------------------------------------
class UprankRequest(Base):
    __tablename__ = "uprank_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False
    )
    current_rank: Mapped[str] = mapped_column(String(100), nullable=False)
    target_rank: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    achievements: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RequestStatus.PENDING)
    rejection_reason: Mapped[str | None] = mapped_column(Text, default=None)
    requested_by_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    processed_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), default=None
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    employee: Mapped[Employee] = relationship()
    requested_by: Mapped[User] = relationship(foreign_keys=[requested_by_id])
    processed_by: Mapped[User | None] = relationship(foreign_keys=[processed_by_id])

    def __repr__(self) -> str:
        return f"<UprankRequest id={self.id} employee={self.employee_id} status={self.status}>"


class UprankLock(Base):
    """Promotion hold: the employee cannot be upranked before ``locked_until``."""

    __tablename__ = "uprank_locks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    # Team whose join triggered the hold, or "MANUAL".
    team: Mapped[str] = mapped_column(String(30), nullable=False)
    locked_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    employee: Mapped[Employee] = relationship()
    created_by: Mapped[User] = relationship()

    __table_args__ = (
        Index("ix_uprank_locks_employee_active", "employee_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<UprankLock employee={self.employee_id} until={self.locked_until:%Y-%m-%d} active={self.is_active}>"


# ---------------------------------------------------------------------------
# Academy curriculum — modules, exams, retrainings
# ---------------------------------------------------------------------------
class AcademyModule(Base):
    __tablename__ = "academy_modules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ModuleCategory.JUNIOR_OFFICER
    )
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<AcademyModule {self.name!r} category={self.category}>"


class AcademyProgress(Base):
    """One completed module for one employee."""

    __tablename__ = "academy_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False
    )
    module_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("academy_modules.id", ondelete="CASCADE"), nullable=False
    )
    completed_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    module: Mapped[AcademyModule] = relationship()
    completed_by: Mapped[User] = relationship()

    __table_args__ = (
        UniqueConstraint("employee_id", "module_id", name="uq_academy_progress_employee_module"),
    )


class AcademyExam(Base):
    __tablename__ = "academy_exams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    candidate_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False
    )
    examiner_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    max_score: Mapped[int] = mapped_column(Integer, nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    conducted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    candidate: Mapped[Employee] = relationship()
    examiner: Mapped[User] = relationship()

    def __repr__(self) -> str:
        return f"<AcademyExam candidate={self.candidate_id} {self.score}/{self.max_score} passed={self.passed}>"


class AcademyRetraining(Base):
    __tablename__ = "academy_retrainings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RetrainingStatus.OPEN)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    completed_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), default=None
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    employee: Mapped[Employee] = relationship()
    created_by: Mapped[User] = relationship(foreign_keys=[created_by_id])
    completed_by: Mapped[User | None] = relationship(foreign_keys=[completed_by_id])


# ---------------------------------------------------------------------------
# Quality Assurance — unit reviews
# ---------------------------------------------------------------------------
class UnitReview(Base):
    __tablename__ = "unit_reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    unit: Mapped[str] = mapped_column(String(100), nullable=False)
    review_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    findings: Mapped[str | None] = mapped_column(Text, default=None)
    recommendations: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ReviewStatus.DRAFT)
    reviewer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    reviewer: Mapped[User] = relationship()

    __table_args__ = (
        Index("ix_unit_reviews_unit_status", "unit", "status"),
    )

    def __repr__(self) -> str:
        return f"<UnitReview unit={self.unit!r} rating={self.rating} status={self.status}>"


# ---------------------------------------------------------------------------
# Detective case files
# ---------------------------------------------------------------------------
class DetectiveCase(Base):
    __tablename__ = "detective_cases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=CaseStatus.OPEN)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=Priority.NORMAL)
    suspects: Mapped[str | None] = mapped_column(Text, default=None)
    assigned_to_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("employees.id", ondelete="SET NULL"), default=None
    )
    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    assigned_to: Mapped[Employee | None] = relationship()
    created_by: Mapped[User] = relationship()

    def __repr__(self) -> str:
        return f"<DetectiveCase {self.case_number} status={self.status}>"


# ---------------------------------------------------------------------------
# Field reports — robberies & illegal tuning
# ---------------------------------------------------------------------------
class RobberyReport(Base):
    __tablename__ = "robbery_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    leader_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("employees.id"), nullable=False
    )
    negotiator_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("employees.id"), default=None
    )
    outcome: Mapped[str | None] = mapped_column(Text, default=None)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    leader: Mapped[Employee] = relationship(foreign_keys=[leader_id])
    negotiator: Mapped[Employee | None] = relationship(foreign_keys=[negotiator_id])

    def __repr__(self) -> str:
        return f"<RobberyReport id={self.id} location={self.location!r}>"


class TuningReport(Base):
    __tablename__ = "tuning_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vehicle: Mapped[str] = mapped_column(String(100), nullable=False)
    plate: Mapped[str | None] = mapped_column(String(20), default=None)
    owner_name: Mapped[str | None] = mapped_column(String(100), default=None)
    violation: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TuningStatus.OPEN)
    reported_by_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    completed_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), default=None
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    reported_by: Mapped[User] = relationship(foreign_keys=[reported_by_id])
    completed_by: Mapped[User | None] = relationship(foreign_keys=[completed_by_id])


# ---------------------------------------------------------------------------
# Leadership board — notes & tasks
# ---------------------------------------------------------------------------
class LeadershipNote(Base):
    __tablename__ = "leadership_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    author_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    author: Mapped[User] = relationship()


class LeadershipTask(Base):
    __tablename__ = "leadership_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TaskStatus.OPEN)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=Priority.NORMAL)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    assignee_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), default=None
    )
    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    assignee: Mapped[User | None] = relationship(foreign_keys=[assignee_id])
    created_by: Mapped[User] = relationship(foreign_keys=[created_by_id])


# ---------------------------------------------------------------------------
# AuditLog — every successful mutating request
# ---------------------------------------------------------------------------
class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_audit_logs_user_time", "user_id", "created_at"),
        Index("ix_audit_logs_entity", "entity", "entity_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} action={self.action!r}>"


# ---------------------------------------------------------------------------
# AdminLog — before/after snapshots for admin mutations
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"


# ---------------------------------------------------------------------------
# Setting — runtime key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Values are JSON strings.  Also carries state shared between the bot and
    the API process, such as the guild's rank-role catalogue.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"


# ---------------------------------------------------------------------------
# OAuthState — one-time CSRF tokens for OAuth callback validation
# ---------------------------------------------------------------------------
class OAuthState(Base):
    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_oauth_states_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OAuthState state={self.state[:8]!r}...>"


# ---------------------------------------------------------------------------
# RateLimitEvent — durable mutation events for per-user throttling
# ---------------------------------------------------------------------------
class RateLimitEvent(Base):
    __tablename__ = "rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_key: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_rate_limit_user_ts", "user_key", timestamp.desc()),
    )

    def __repr__(self) -> str:
        return f"<RateLimitEvent user={self.user_key!r} ts={self.timestamp}>"
