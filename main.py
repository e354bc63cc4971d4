from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field

from catalog import CatalogError, load_catalog, validate_catalog
from models import Course, Lock, Plan, Preferences, term_sequence
from planner import plan_courses, validate_plan
from settings import CORS_ORIGINS, DEFAULT_HORIZON_YEARS, LOG_LEVEL, MAX_HOURS_CEILING, TERMS_PER_YEAR

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Term Planner Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# -----------------------------------------------------------------------------
# Request / response models
# -----------------------------------------------------------------------------
class GeneratePlanRequest(BaseModel):
    courses: Optional[List[Course]] = None          # falls back to the loaded catalog
    preferences: Optional[Preferences] = None       # falls back to the stored preferences
    horizon: Optional[List[str]] = None             # falls back to the default horizon
    approved: List[int] = []
    locks: List[Lock] = []

class ValidatePlanRequest(BaseModel):
    plan: Plan
    courses: Optional[List[Course]] = None
    max_hours_per_term: Optional[int] = Field(default=None, gt=0)
    approved: List[int] = []

class ValidationResult(BaseModel):
    valid: bool
    errors: List[str] = []

class SeedResult(BaseModel):
    courses: int

# -----------------------------------------------------------------------------
# In-memory stores
# -----------------------------------------------------------------------------
COURSES: Dict[int, Course] = {}
PREFERENCES: Dict[str, Preferences] = {"current": Preferences()}

def _catalog(courses: Optional[List[Course]]) -> List[Course]:
    try:
        return validate_catalog(courses if courses is not None else list(COURSES.values()))
    except CatalogError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "ok"}

@app.get("/favicon.ico")
async def favicon():
    return Response(status_code=204)

@app.get("/courses", response_model=List[Course])
async def list_courses():
    return list(COURSES.values())

@app.post("/courses", response_model=Course)
async def create_course(course: Course):
    if course.id in COURSES:
        raise HTTPException(status_code=400, detail="Course already exists")
    COURSES[course.id] = course
    return course

@app.get("/preferences", response_model=Preferences)
async def get_preferences():
    return PREFERENCES["current"]

@app.put("/preferences", response_model=Preferences)
async def put_preferences(prefs: Preferences):
    PREFERENCES["current"] = prefs
    return prefs

@app.get("/horizon", response_model=List[str])
async def default_horizon(years: int = DEFAULT_HORIZON_YEARS, terms_per_year: int = TERMS_PER_YEAR):
    if years < 1 or terms_per_year < 1:
        raise HTTPException(status_code=400, detail="years and terms_per_year must be positive")
    return term_sequence(years, terms_per_year)

@app.post("/plans/generate", response_model=Plan)
def api_generate_plan(body: GeneratePlanRequest):
    courses = _catalog(body.courses)
    prefs = body.preferences or PREFERENCES["current"]
    try:
        return plan_courses(
            courses,
            preferences=prefs,
            horizon=body.horizon,
            approved=body.approved,
            locks=body.locks,
        )
    except CatalogError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

@app.post("/plans/validate", response_model=ValidationResult)
def api_validate_plan(body: ValidatePlanRequest):
    courses = _catalog(body.courses)
    if body.max_hours_per_term:
        cap = min(body.max_hours_per_term, MAX_HOURS_CEILING)
    else:
        cap = PREFERENCES["current"].max_hours_per_term
    errors = validate_plan(body.plan, courses, cap, body.approved)
    return ValidationResult(valid=not errors, errors=errors)

# -----------------------------------------------------------------------------
# Seed loader: the bundled study plan
# -----------------------------------------------------------------------------
@app.post("/seed/catalog", response_model=SeedResult)
async def seed_catalog():
    try:
        courses = load_catalog()
    except (CatalogError, OSError) as exc:
        logger.error("Could not load catalog: %s", exc)
        raise HTTPException(status_code=500, detail=f"Could not load catalog: {exc}")
    COURSES.clear()
    for c in courses:
        COURSES[c.id] = c
    return SeedResult(courses=len(COURSES))
