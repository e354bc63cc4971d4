from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

from pydantic import ValidationError

from models import Course
from settings import CATALOG_PATH

logger = logging.getLogger(__name__)


class CatalogError(ValueError):
    """Malformed catalog data: bad time strings, negative hours, duplicate ids."""


def validate_catalog(records: Iterable[Union[Course, dict]]) -> List[Course]:
    """Build Course models from raw records and check catalog-wide invariants.

    Dangling correlatives are allowed here; they are a planning-time condition.
    """
    courses: List[Course] = []
    seen: set = set()
    for idx, raw in enumerate(records):
        try:
            course = raw.model_copy(deep=True) if isinstance(raw, Course) else Course.model_validate(raw)
        except ValidationError as exc:
            ident = raw.get("id", f"#{idx}") if isinstance(raw, dict) else f"#{idx}"
            raise CatalogError(f"Invalid course {ident}: {_first_error(exc)}") from exc
        if course.id in seen:
            raise CatalogError(f"Duplicate course id: {course.id}")
        seen.add(course.id)
        courses.append(course)

    _report_dangling(courses, logging.DEBUG)
    return courses


def load_catalog(path: Optional[Union[str, Path]] = None) -> List[Course]:
    path = Path(path) if path else CATALOG_PATH
    try:
        with open(path, encoding="utf-8") as f:
            data: Any = json.load(f)
    except json.JSONDecodeError as exc:
        raise CatalogError(f"Catalog file {path} is not valid JSON: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("courses", [])
    if not isinstance(data, list):
        raise CatalogError(f"Catalog file {path} must hold a list of courses")
    courses = validate_catalog(data)
    _report_dangling(courses, logging.WARNING)
    logger.info("Loaded %d courses from %s", len(courses), path)
    return courses


def _report_dangling(courses: List[Course], level: int) -> None:
    known = {c.id for c in courses}
    for c in courses:
        missing = [r for r in c.correlatives if r not in known]
        if missing:
            logger.log(level, "Course %s references unknown correlative(s) %s", c.id, missing)


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))
