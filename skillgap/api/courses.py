from typing import Dict, List

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from skillgap.api.common import ApiError
from skillgap.config.settings import settings
from skillgap.db import pg
from skillgap.services.recommender import search_courses_by_domain
from skillgap.services.synonyms import expand_domains

router = APIRouter(prefix="/v1/courses", tags=["Courses"])


class DomainCourse(BaseModel):
    course_id: str
    name_ar: str | None = None
    name_en: str | None = None
    subject: str | None = None
    skill_ids: List[str] = Field(default_factory=list)
    skill_coverage: int = 0


class DomainSearchResponse(BaseModel):
    domain_id: str
    terms: List[str]
    courses: List[DomainCourse]


@router.get(
    "/search",
    summary="Courses by training domain",
    description="Matches course subjects against the domain's Arabic/English names and synonyms.",
    response_model=DomainSearchResponse,
    responses={
        404: {"model": ApiError, "description": "Domain not found"},
        503: {"model": ApiError, "description": "Graph gateway unavailable"},
    },
)
def search_by_domain(domain_id: str, limit: int = Query(10, ge=1)) -> Dict:
    domains = pg.get_domains([domain_id])
    if not domains:
        raise HTTPException(status_code=404, detail="Domain not found")
    d = domains[0]
    terms = expand_domains({d["id"]: (d.get("name_ar"), d.get("name_en"))}).get(d["id"], [])
    courses = search_courses_by_domain(terms, min(limit, settings.recommendation_max_limit))
    return {"domain_id": d["id"], "terms": terms, "courses": courses}
