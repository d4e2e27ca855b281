from __future__ import annotations

import logging
import random
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from gio.config import CORS_ORIGINS, DATA_DIR, LEADERBOARD_SIZE, LOG_LEVEL
from gio.database import Base, engine, get_db
from gio.errors import GioError
from gio.rules import RankResolver, coerce_number
from gio.schemas import (
    CoordinatorCreate,
    PaymentStatusUpdate,
    ScoreSubmit,
    StudentCreate,
    StudentRosterUpload,
)
from gio.services import (
    approve_coordinator,
    bulk_register_students,
    calculate_incentives,
    coordinator_test_counts,
    create_coordinator,
    create_student,
    get_certificate,
    get_coordinator_or_404,
    get_leaderboard,
    get_participant_rankings,
    get_partner_rank,
    incentive_record,
    list_coordinator_students,
    record_score,
    student_profile,
    student_summary,
    update_payment_status,
)
from gio.tables import IncentiveConfig, load_incentive_config, load_rank_tables


logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


app = FastAPI(
    title="GIO - Ranking and Incentive Service",
    version="1.0.0",
    description=(
        "Score submission with table-driven ranks, certificates for perfect live "
        "papers, coordinator incentives and leaderboards."
    ),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    # ConfigurationError propagates: the process must not serve without tables.
    tables = load_rank_tables(DATA_DIR)
    app.state.incentive_config = load_incentive_config(DATA_DIR)
    app.state.resolver = RankResolver(tables, random.Random())
    Base.metadata.create_all(bind=engine)
    logger.info("Startup complete, data dir %s", DATA_DIR)


@app.exception_handler(GioError)
async def gio_error_handler(request: Request, exc: GioError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    else:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def get_resolver(request: Request) -> RankResolver:
    return request.app.state.resolver


def get_incentive_config(request: Request) -> IncentiveConfig:
    return request.app.state.incentive_config


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/coordinators")
def register_coordinator(payload: CoordinatorCreate, db: Session = Depends(get_db)):
    c = create_coordinator(db, payload.name, payload.email, payload.country, payload.state, payload.city)
    db.commit()
    db.refresh(c)
    return {"id": c.id, "name": c.name, "email": c.email, "status": c.status, **incentive_record(c)}


@app.post("/coordinators/{coordinator_id}/approve")
def approve(coordinator_id: int, db: Session = Depends(get_db)):
    c = approve_coordinator(db, coordinator_id)
    db.commit()
    return {"id": c.id, "status": c.status, "approved_at": c.approved_at}


@app.get("/coordinators/leaderboard")
def leaderboard(
    approved_only: bool = Query(default=False),
    limit: Optional[int] = Query(default=LEADERBOARD_SIZE, ge=1),
    db: Session = Depends(get_db),
):
    return {"leaderboard": get_leaderboard(db, limit=limit, approved_only=approved_only)}


@app.get("/coordinators/{coordinator_id}")
def coordinator_profile(coordinator_id: int, db: Session = Depends(get_db)):
    c = get_coordinator_or_404(db, coordinator_id)
    return {
        "id": c.id,
        "name": c.name,
        "email": c.email,
        "country": c.country,
        "state": c.state,
        "city": c.city,
        "status": c.status,
        "total_students": c.total_students,
        **incentive_record(c),
    }


@app.get("/coordinators/{coordinator_id}/rank")
def partner_rank(coordinator_id: int, db: Session = Depends(get_db)):
    result = get_partner_rank(db, coordinator_id)
    db.commit()
    return result


@app.post("/coordinators/{coordinator_id}/incentives")
def recalculate_incentives(
    coordinator_id: int,
    db: Session = Depends(get_db),
    config: IncentiveConfig = Depends(get_incentive_config),
):
    summary = calculate_incentives(db, config, coordinator_id)
    db.commit()
    return {
        "category": summary.category,
        "total_paid_students": summary.total_paid_students,
        "base_incentive": summary.base_incentive,
        "bonus_amount": summary.bonus_amount,
        "total_earnings": summary.total_earnings,
    }


@app.get("/coordinators/{coordinator_id}/students")
def coordinator_students(coordinator_id: int, db: Session = Depends(get_db)):
    return {"students": list_coordinator_students(db, coordinator_id)}


@app.post("/coordinators/{coordinator_id}/students/bulk")
def bulk_upload(coordinator_id: int, payload: StudentRosterUpload, db: Session = Depends(get_db)):
    result = bulk_register_students(db, coordinator_id, payload.students)
    db.commit()
    return result


@app.get("/coordinators/{coordinator_id}/test-counts")
def test_counts(coordinator_id: int, db: Session = Depends(get_db)):
    return coordinator_test_counts(db, coordinator_id)


@app.put("/coordinators/{coordinator_id}/students/{student_id}/payment-status")
def set_payment_status(
    coordinator_id: int,
    student_id: int,
    payload: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    config: IncentiveConfig = Depends(get_incentive_config),
):
    summary = update_payment_status(db, config, coordinator_id, student_id, payload.payment_status)
    db.commit()
    return {
        "student_id": student_id,
        "payment_status": payload.payment_status,
        "category": summary.category,
        "total_paid_students": summary.total_paid_students,
        "total_earnings": summary.total_earnings,
    }


@app.post("/students")
def register_student(payload: StudentCreate, db: Session = Depends(get_db)):
    s = create_student(
        db,
        name=payload.name,
        username=payload.username,
        school_name=payload.school_name,
        standard=payload.standard,
        country=payload.country,
        state=payload.state,
        city=payload.city,
        coordinator_id=payload.coordinator_id,
    )
    db.commit()
    db.refresh(s)
    return student_summary(s)


@app.get("/students/{student_id}")
def get_student(student_id: int, db: Session = Depends(get_db)):
    return student_profile(db, student_id)


@app.post("/students/{student_id}/scores")
def submit_score(
    student_id: int,
    payload: ScoreSubmit,
    db: Session = Depends(get_db),
    resolver: RankResolver = Depends(get_resolver),
):
    result = record_score(db, resolver, student_id, payload.score, payload.total, payload.type)
    db.commit()
    return result.as_dict()


@app.get("/ranks/resolve")
def resolve_rank(
    score: str = Query(...),
    type: str = Query(...),
    scope: str = Query(default="global"),
    resolver: RankResolver = Depends(get_resolver),
):
    result = resolver.resolve(coerce_number(score, "Score"), type, scope)
    return {"scope": scope, "type": type, **result.as_dict()}


@app.get("/rankings/participants")
def participant_rankings(scope: str = Query(default="global"), db: Session = Depends(get_db)):
    return {"scope": scope, "partitions": get_participant_rankings(db, scope)}


@app.get("/certificates/{code}")
def certificate(code: str, db: Session = Depends(get_db)):
    return get_certificate(db, code)
