from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gio.config import DEFAULT_PARTNER_CATEGORY
from gio.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_test_id() -> str:
    return uuid.uuid4().hex


class Coordinator(Base):
    __tablename__ = "coordinators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    country: Mapped[str] = mapped_column(String(64), nullable=False)
    state: Mapped[str] = mapped_column(String(64), nullable=False)
    city: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)  # pending/approved
    category: Mapped[str] = mapped_column(String(64), default=DEFAULT_PARTNER_CATEGORY, nullable=False)
    total_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_paid_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_incentives: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    bonus_amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_earnings: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_incentive_calculation: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    students: Mapped[list["Student"]] = relationship("Student", back_populates="coordinator")


class Student(Base):
    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    username: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    school_name: Mapped[str] = mapped_column(String(256), nullable=False)
    standard: Mapped[str] = mapped_column(String(16), nullable=False)
    country: Mapped[str] = mapped_column(String(64), nullable=False)
    state: Mapped[str] = mapped_column(String(64), nullable=False)
    city: Mapped[str] = mapped_column(String(64), nullable=False)
    coordinator_id: Mapped[int | None] = mapped_column(
        ForeignKey("coordinators.id"), nullable=True, index=True
    )
    payment_status: Mapped[str] = mapped_column(String(32), default="unpaid", nullable=False)
    practice_tests_attempted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    test_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    coordinator: Mapped[Coordinator | None] = relationship("Coordinator", back_populates="students")
    scores: Mapped[list["ScoreEntry"]] = relationship(
        "ScoreEntry", back_populates="student", cascade="all, delete-orphan"
    )
    ranks: Mapped[list["StudentRank"]] = relationship(
        "StudentRank", back_populates="student", cascade="all, delete-orphan"
    )
    certificates: Mapped[list["Certificate"]] = relationship(
        "Certificate", back_populates="student", cascade="all, delete-orphan"
    )


class ScoreEntry(Base):
    __tablename__ = "score_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    test_id: Mapped[str] = mapped_column(String(32), default=new_test_id, unique=True, nullable=False)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), nullable=False, index=True)
    test_type: Mapped[str] = mapped_column(String(8), nullable=False)  # mock / live
    score: Mapped[float] = mapped_column(Float, nullable=False)
    total: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    student: Mapped[Student] = relationship("Student", back_populates="scores")


class StudentRank(Base):
    __tablename__ = "student_ranks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), nullable=False, index=True)
    test_type: Mapped[str] = mapped_column(String(8), nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)  # global/country/state/city
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = Unranked
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    student: Mapped[Student] = relationship("Student", back_populates="ranks")

    __table_args__ = (
        UniqueConstraint("student_id", "test_type", "scope", name="uq_student_rank"),
    )


class Certificate(Base):
    __tablename__ = "certificates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), nullable=False, index=True)
    student_name: Mapped[str] = mapped_column(String(128), nullable=False)
    rankings: Mapped[dict] = mapped_column(JSON, nullable=False)  # scope -> {rank, category}
    issued_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    student: Mapped[Student] = relationship("Student", back_populates="certificates")
