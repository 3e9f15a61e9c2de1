from typing import Any, Dict, List

import psycopg2
from pydantic import BaseModel, Field

from skillgap.core.logging import logger
from skillgap.db import pg
from skillgap.services.recommender import ScoredCourse

CATALOG_FIELDS = (
    "name_ar",
    "name_en",
    "description_ar",
    "description_en",
    "url",
    "provider",
    "duration_hours",
    "difficulty_level",
    "language",
    "subject",
    "subtitle",
    "university",
    "skill_tags",
)


class RankedCourse(BaseModel):
    id: str
    name_ar: str | None = None
    name_en: str | None = None
    description_ar: str | None = None
    description_en: str | None = None
    url: str | None = None
    provider: str | None = None
    duration_hours: float | None = None
    difficulty_level: str | None = None
    language: str | None = None
    subject: str | None = None
    subtitle: str | None = None
    university: str | None = None
    skill_tags: List[str] | None = None
    skills: List[Dict[str, Any]] = Field(default_factory=list)
    recommendation_score: float
    matching_skills: List[str]
    max_priority: int
    skill_coverage: int
    query_path: str
    enrichment: Dict[str, Any] | None = None


def _enrichments(course_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    try:
        return pg.course_enrichments(course_ids)
    except psycopg2.Error as e:
        logger.warning("course_enrichment_unavailable", error=str(e))
        return {}


def merge_with_catalog(ranked: List[ScoredCourse]) -> List[RankedCourse]:
    """Attach catalog display data to graph-ranked courses, keeping rank order.

    The catalog is authoritative: a course the graph knows but the catalog does
    not is dropped.
    """
    if not ranked:
        return []
    ids = [c.course_id for c in ranked]
    catalog = pg.courses_by_ids(ids)
    extras = _enrichments([i for i in ids if i in catalog])
    out: List[RankedCourse] = []
    for scored in ranked:
        row = catalog.get(scored.course_id)
        if row is None:
            logger.debug("ranked_course_not_in_catalog", course_id=scored.course_id)
            continue
        fields = {k: row.get(k) for k in CATALOG_FIELDS}
        if fields["duration_hours"] is not None:
            fields["duration_hours"] = float(fields["duration_hours"])
        out.append(
            RankedCourse(
                id=scored.course_id,
                **fields,
                skills=row.get("skills") or [],
                recommendation_score=scored.recommendation_score,
                matching_skills=scored.matching_skills,
                max_priority=scored.max_priority,
                skill_coverage=scored.skill_coverage,
                query_path=scored.query_path,
                enrichment=extras.get(scored.course_id),
            )
        )
    return out
