from __future__ import annotations

import os
from pathlib import Path


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./gio.db")
DATA_DIR = Path(os.getenv("GIO_DATA_DIR", str(Path(__file__).resolve().parent / "data")))
LOG_LEVEL = os.getenv("GIO_LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("GIO_CORS_ORIGINS", "*").split(",") if o.strip()]
LEADERBOARD_SIZE = int(os.getenv("GIO_LEADERBOARD_SIZE", "10"))

SCOPES = ("global", "country", "state", "city")
TEST_TYPES = ("mock", "live")
MAX_SCORES = {"mock": 100, "live": 400}

# Only this payment status counts towards coordinator incentives.
PAID_STATUS = "paid_but_not_attempted"
PAYMENT_STATUSES = ("unpaid", "paid_but_not_attempted", "paid_and_attempted")

PERFECT_SCORE_RESULT = (1, "Gold")
UNRANKED = "Unranked"

PARTICIPANT_RANK_CAPS = {"global": 100000, "country": 10000, "state": 1000, "city": 100}
# (fraction of cap, label), checked top-down.
PARTICIPANT_CATEGORY_PERCENTILES = ((0.01, "Gold"), (0.05, "Silver"), (0.10, "Bronze"))

DEFAULT_PARTNER_CATEGORY = "Starter Partner"
CERTIFICATE_PREFIX = "GIO"
