from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gio.config import (
    CERTIFICATE_PREFIX,
    LEADERBOARD_SIZE,
    MAX_SCORES,
    PAYMENT_STATUSES,
    UNRANKED,
)
from gio.errors import NotFoundError, StorageError, ValidationError
from gio.models import Certificate, Coordinator, ScoreEntry, Student, StudentRank, utcnow
from gio.rules import (
    CoordinatorStanding,
    IncentiveSummary,
    ParticipantScore,
    RankResolver,
    RankResult,
    RosterStudent,
    coerce_number,
    compute_incentives,
    coordinator_leaderboard,
    max_score_for,
    partner_rank,
    rank_participants,
)
from gio.tables import IncentiveConfig


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

ROSTER_REQUIRED_FIELDS = ("name", "username", "school_name", "standard", "country", "state", "city")


@dataclass(frozen=True)
class ScoreRecord:
    test_id: str
    test_type: str
    ranks: Dict[str, RankResult]
    certificate_code: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "test_id": self.test_id,
            "type": self.test_type,
            "ranks": {scope: r.as_dict() for scope, r in self.ranks.items()},
            "certificate_code": self.certificate_code,
        }


def get_or_404(db: Session, model: Any, obj_id: int, label: str):
    obj = db.get(model, obj_id)
    if not obj:
        raise NotFoundError(f"{label} not found")
    return obj


def get_student_or_404(db: Session, student_id: int) -> Student:
    return get_or_404(db, Student, student_id, "Student")


def get_coordinator_or_404(db: Session, coordinator_id: int) -> Coordinator:
    return get_or_404(db, Coordinator, coordinator_id, "Coordinator")


def flush_or_raise(db: Session, action: str) -> None:
    try:
        db.flush()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Storage failure while %s", action)
        raise StorageError(f"Storage failure while {action}") from exc


def _clean(value: Any) -> str:
    return str(value).strip() if value is not None else ""


# --- registration -----------------------------------------------------------


def create_coordinator(
    db: Session, name: str, email: str, country: str, state: str, city: str
) -> Coordinator:
    email = email.strip().lower()
    if db.scalar(select(Coordinator).where(Coordinator.email == email)):
        raise ValidationError("Coordinator email already registered")
    coordinator = Coordinator(
        name=name.strip(),
        email=email,
        country=country.strip(),
        state=state.strip(),
        city=city.strip(),
    )
    db.add(coordinator)
    flush_or_raise(db, "registering coordinator")
    return coordinator


def approve_coordinator(db: Session, coordinator_id: int, now: Clock = utcnow) -> Coordinator:
    coordinator = get_coordinator_or_404(db, coordinator_id)
    if coordinator.status == "approved":
        raise ValidationError("Coordinator is already approved")
    coordinator.status = "approved"
    coordinator.approved_at = now()
    flush_or_raise(db, "approving coordinator")
    return coordinator


def create_student(
    db: Session,
    name: str,
    username: str,
    school_name: str,
    standard: str,
    country: str,
    state: str,
    city: str,
    coordinator_id: Optional[int] = None,
) -> Student:
    if coordinator_id is not None:
        get_coordinator_or_404(db, coordinator_id)
    username = username.strip()
    if db.scalar(select(Student).where(Student.username == username)):
        raise ValidationError("Username already exists")
    student = Student(
        name=name.strip(),
        username=username,
        school_name=school_name.strip(),
        standard=standard.strip(),
        country=country.strip(),
        state=state.strip(),
        city=city.strip(),
        coordinator_id=coordinator_id,
    )
    db.add(student)
    flush_or_raise(db, "registering student")
    return student


def bulk_register_students(
    db: Session, coordinator_id: int, rows: Iterable[dict[str, Any]]
) -> dict[str, Any]:
    """
    Register already-parsed roster rows for a coordinator. Invalid rows are
    reported back with a reason and skipped.
    """
    coordinator = get_coordinator_or_404(db, coordinator_id)
    existing = set(db.scalars(select(Student.username)).all())

    failed: list[dict[str, Any]] = []
    success = 0
    for row in rows:
        values = {field: _clean(row.get(field)) for field in ROSTER_REQUIRED_FIELDS}
        missing = [field for field, value in values.items() if not value]
        if missing:
            failed.append({"student": row, "reason": f"Missing required fields: {', '.join(missing)}"})
            continue
        if values["username"] in existing:
            failed.append({"student": row, "reason": "Username already exists"})
            continue
        existing.add(values["username"])
        db.add(Student(coordinator_id=coordinator.id, **values))
        success += 1

    coordinator.total_students += success
    flush_or_raise(db, "bulk registering students")
    logger.info(
        "Bulk roster for coordinator %s: %d added, %d failed", coordinator.id, success, len(failed)
    )
    return {"success_count": success, "failed_count": len(failed), "failed_entries": failed}


# --- student views ----------------------------------------------------------


def rank_value(rank: Optional[int]) -> Any:
    return rank if rank is not None else UNRANKED


def ranks_by_type(ranks: Iterable[StudentRank]) -> dict[str, dict[str, dict[str, Any]]]:
    out: dict[str, dict[str, dict[str, Any]]] = {}
    for row in ranks:
        out.setdefault(row.test_type, {})[row.scope] = {
            "rank": rank_value(row.rank),
            "category": row.category,
        }
    return out


def student_summary(student: Student) -> dict[str, Any]:
    return {
        "id": student.id,
        "name": student.name,
        "username": student.username,
        "school_name": student.school_name,
        "standard": student.standard,
        "country": student.country,
        "state": student.state,
        "city": student.city,
        "coordinator_id": student.coordinator_id,
        "payment_status": student.payment_status,
        "practice_tests_attempted": student.practice_tests_attempted,
        "test_completed": student.test_completed,
        "created_at": student.created_at,
    }


def student_profile(db: Session, student_id: int) -> dict[str, Any]:
    student = get_student_or_404(db, student_id)
    marks: dict[str, dict[str, dict[str, Any]]] = {}
    for entry in sorted(student.scores, key=lambda e: e.id):
        marks.setdefault(entry.test_type, {})[entry.test_id] = {
            "score": entry.score,
            "total": entry.total,
            "timestamp": entry.created_at.isoformat(),
        }
    profile = student_summary(student)
    profile["marks"] = marks
    profile["ranks"] = ranks_by_type(student.ranks)
    profile["certificate_codes"] = [c.code for c in student.certificates]
    return profile


def list_coordinator_students(db: Session, coordinator_id: int) -> list[dict[str, Any]]:
    get_coordinator_or_404(db, coordinator_id)
    rows = db.scalars(
        select(Student).where(Student.coordinator_id == coordinator_id).order_by(Student.id.asc())
    ).all()
    return [student_summary(s) for s in rows]


# --- score recording --------------------------------------------------------


def generate_certificate_code() -> str:
    return f"{CERTIFICATE_PREFIX}-{uuid.uuid4().hex.upper()}"


def _store_rank_profile(
    student: Student, test_type: str, profile: Dict[str, RankResult], now: datetime
) -> None:
    current = {row.scope: row for row in student.ranks if row.test_type == test_type}
    for scope, result in profile.items():
        rank = result.rank if isinstance(result.rank, int) else None
        row = current.get(scope)
        if row is None:
            student.ranks.append(
                StudentRank(
                    test_type=test_type,
                    scope=scope,
                    rank=rank,
                    category=result.category,
                    updated_at=now,
                )
            )
        else:
            row.rank = rank
            row.category = result.category
            row.updated_at = now


def issue_certificate(db: Session, student: Student, now: datetime) -> Certificate:
    certificate = Certificate(
        code=generate_certificate_code(),
        student_name=student.name,
        rankings=ranks_by_type(student.ranks),
        issued_at=now,
    )
    student.certificates.append(certificate)
    flush_or_raise(db, "issuing certificate")
    logger.info("Issued certificate %s to student %s", certificate.code, student.id)
    return certificate


def record_score(
    db: Session,
    resolver: RankResolver,
    student_id: int,
    score: Any,
    total: Any,
    test_type: str,
    now: Clock = utcnow,
) -> ScoreRecord:
    max_score = max_score_for(test_type)
    score = coerce_number(score, "Score")
    total = coerce_number(total, "Total")
    if score < 0:
        raise ValidationError("Score cannot be negative")
    if total <= 0:
        raise ValidationError("Total must be positive")
    if score > total:
        raise ValidationError("Score cannot exceed total")

    student = get_student_or_404(db, student_id)
    timestamp = now()
    entry = ScoreEntry(test_type=test_type, score=score, total=total, created_at=timestamp)
    student.scores.append(entry)
    # Ranks are only resolved once the score entry itself is stored.
    flush_or_raise(db, "saving score entry")

    profile = resolver.resolve_profile(score, test_type)
    _store_rank_profile(student, test_type, profile, timestamp)
    if test_type == "mock":
        student.practice_tests_attempted += 1
    else:
        student.test_completed = True
    flush_or_raise(db, "saving ranks")

    certificate_code = None
    if test_type == "live" and total == MAX_SCORES["live"]:
        certificate_code = issue_certificate(db, student, timestamp).code

    logger.info(
        "Recorded %s score %g/%g for student %s (max %d)",
        test_type,
        score,
        total,
        student.id,
        max_score,
    )
    return ScoreRecord(
        test_id=entry.test_id,
        test_type=test_type,
        ranks=profile,
        certificate_code=certificate_code,
    )


def get_certificate(db: Session, code: str) -> dict[str, Any]:
    certificate = db.scalar(select(Certificate).where(Certificate.code == code.strip().upper()))
    if not certificate:
        raise NotFoundError("Certificate not found")
    return {
        "code": certificate.code,
        "student_id": certificate.student_id,
        "name": certificate.student_name,
        "rankings": certificate.rankings,
        "issued_at": certificate.issued_at.isoformat(),
    }


# --- incentives -------------------------------------------------------------


def _roster(db: Session) -> list[RosterStudent]:
    rows = db.execute(
        select(Student.coordinator_id, Student.payment_status, Student.practice_tests_attempted)
    ).all()
    return [
        RosterStudent(
            coordinator_id=coordinator_id,
            payment_status=payment_status or "unpaid",
            practice_tests_attempted=practice or 0,
        )
        for coordinator_id, payment_status, practice in rows
    ]


def calculate_incentives(
    db: Session, config: IncentiveConfig, coordinator_id: int, now: Clock = utcnow
) -> IncentiveSummary:
    coordinator = get_coordinator_or_404(db, coordinator_id)
    summary = compute_incentives(coordinator.id, _roster(db), config.tiers, config.bonuses)

    coordinator.category = summary.category
    coordinator.total_paid_students = summary.total_paid_students
    coordinator.total_incentives = summary.base_incentive
    coordinator.bonus_amount = summary.bonus_amount
    coordinator.total_earnings = summary.total_earnings
    coordinator.last_incentive_calculation = now()
    flush_or_raise(db, "saving incentives")

    logger.info(
        "Incentives for coordinator %s: %s, %d paid, earnings %g",
        coordinator.id,
        summary.category,
        summary.total_paid_students,
        summary.total_earnings,
    )
    return summary


def incentive_record(coordinator: Coordinator) -> dict[str, Any]:
    calculated = coordinator.last_incentive_calculation
    return {
        "category": coordinator.category,
        "total_paid_students": coordinator.total_paid_students,
        "total_incentives": coordinator.total_incentives,
        "bonus_amount": coordinator.bonus_amount,
        "total_earnings": coordinator.total_earnings,
        "rank": coordinator.rank,
        "last_incentive_calculation": calculated.isoformat() if calculated else None,
    }


def update_payment_status(
    db: Session,
    config: IncentiveConfig,
    coordinator_id: int,
    student_id: int,
    payment_status: str,
) -> IncentiveSummary:
    payment_status = payment_status.strip()
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Payment status must be one of: {', '.join(PAYMENT_STATUSES)}")
    get_coordinator_or_404(db, coordinator_id)
    student = get_student_or_404(db, student_id)
    if student.coordinator_id != coordinator_id:
        raise ValidationError("Student is not registered by this coordinator", status_code=403)

    student.payment_status = payment_status
    flush_or_raise(db, "updating payment status")
    logger.info("Student %s payment status set to %s", student.id, payment_status)
    return calculate_incentives(db, config, coordinator_id)


def coordinator_test_counts(db: Session, coordinator_id: int) -> dict[str, int]:
    get_coordinator_or_404(db, coordinator_id)
    rows = db.execute(
        select(ScoreEntry.test_type, func.count(ScoreEntry.id))
        .join(Student, Student.id == ScoreEntry.student_id)
        .where(Student.coordinator_id == coordinator_id)
        .group_by(ScoreEntry.test_type)
    ).all()
    counts = dict(rows)
    return {
        "total_practice_tests": int(counts.get("mock", 0)),
        "final_practice_tests": int(counts.get("live", 0)),
    }


# --- leaderboards -----------------------------------------------------------


def _standings(db: Session) -> list[CoordinatorStanding]:
    rows = db.scalars(select(Coordinator).order_by(Coordinator.id.asc())).all()
    return [
        CoordinatorStanding(
            coordinator_id=c.id,
            name=c.name,
            category=c.category or "N/A",
            total_incentives=c.total_incentives or 0,
            bonus_amount=c.bonus_amount or 0,
            total_earnings=c.total_earnings or 0,
            status=c.status,
        )
        for c in rows
    ]


def get_leaderboard(
    db: Session, limit: Optional[int] = LEADERBOARD_SIZE, approved_only: bool = False
) -> list[dict[str, Any]]:
    board = coordinator_leaderboard(_standings(db), limit=limit, approved_only=approved_only)
    return [dict(row.as_dict(), position=idx) for idx, row in enumerate(board, start=1)]


def get_partner_rank(db: Session, coordinator_id: int) -> dict[str, int]:
    coordinator = get_coordinator_or_404(db, coordinator_id)
    standings = _standings(db)
    rank = partner_rank(standings, coordinator.id)
    coordinator.rank = rank
    flush_or_raise(db, "saving partner rank")
    return {"rank": rank, "total_coordinators": len(standings)}


def _participants(db: Session) -> List[ParticipantScore]:
    rows = db.execute(
        select(Student, func.coalesce(func.sum(ScoreEntry.score), 0.0))
        .outerjoin(ScoreEntry, ScoreEntry.student_id == Student.id)
        .group_by(Student.id)
        .order_by(Student.id.asc())
    ).all()
    return [
        ParticipantScore(
            student_id=student.id,
            name=student.name,
            country=student.country,
            state=student.state,
            city=student.city,
            cumulative_score=float(total),
        )
        for student, total in rows
    ]


def get_participant_rankings(db: Session, scope: str) -> dict[str, list[dict[str, Any]]]:
    return rank_participants(_participants(db), scope)
