from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Tuple

# -----------------------------------------------------------------------------
# Workload limits
# -----------------------------------------------------------------------------
# Hard ceiling on hours per term. Preferences above it are clamped so a client
# can't ask for an "unlimited" plan that stacks the whole catalog in one term.
MAX_HOURS_CEILING = int(os.getenv("PLANNER_MAX_HOURS_CEILING", "512"))
DEFAULT_MAX_HOURS_PER_TERM = min(int(os.getenv("PLANNER_MAX_HOURS_PER_TERM", "320")), MAX_HOURS_CEILING)

# -----------------------------------------------------------------------------
# Planning horizon
# -----------------------------------------------------------------------------
DEFAULT_HORIZON_YEARS = int(os.getenv("PLANNER_HORIZON_YEARS", "10"))
TERMS_PER_YEAR = 2

# -----------------------------------------------------------------------------
# Time-of-day windows, minutes past midnight: (earliest start, latest end)
# -----------------------------------------------------------------------------
TIME_OF_DAY_WINDOWS: Dict[str, Tuple[int, int]] = {
    "morning": (8 * 60, 13 * 60),
    "afternoon": (13 * 60, 18 * 60),
    "day": (8 * 60, 18 * 60),
}
NIGHT_STARTS_AT = 18 * 60

# -----------------------------------------------------------------------------
# Files, logging, HTTP
# -----------------------------------------------------------------------------
BASE_DIR = Path(__file__).parent
CATALOG_PATH = Path(os.getenv("PLANNER_CATALOG_PATH", str(BASE_DIR / "data" / "study_plan.json")))

LOG_LEVEL = os.getenv("PLANNER_LOG_LEVEL", "INFO").upper()

CORS_ORIGINS: List[str] = [
    o.strip() for o in os.getenv("PLANNER_CORS_ORIGINS", "*").split(",") if o.strip()
]
