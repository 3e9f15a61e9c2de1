import json
from datetime import datetime
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field

from skillgap.config.settings import settings
from skillgap.core.errors import GraphConfigError
from skillgap.core.logging import logger
from skillgap.db import pg
from skillgap.services.enrichment import RankedCourse, merge_with_catalog
from skillgap.services.gaps import SkillRequirement, parse_gaps, translate_gaps
from skillgap.services.graph import gateway as graph_gateway
from skillgap.services.graph import sync
from skillgap.services.graph.gateway import GraphGateway
from skillgap.services.recommender import rank_courses
from skillgap.services.synonyms import resolve_domain_terms


class RecommendationResult(BaseModel):
    status: Literal["ok", "no_assessment", "no_matches"]
    user_id: str
    analyzed_at: datetime | None = None
    query_path: str = "none"
    recommendations: List[RankedCourse] = Field(default_factory=list)
    filtering_criteria: Dict[str, Any] = Field(default_factory=dict)


def resolve_limit(limit: int | None) -> int:
    if limit is None:
        return settings.recommendation_default_limit
    return max(1, min(int(limit), settings.recommendation_max_limit))


def _gap_records(raw: Any) -> List[Dict[str, Any]]:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            logger.warning("analysis_gaps_unreadable", error=str(e))
            return []
    return raw if isinstance(raw, list) else []


def _skill_domains(skill_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    rows = pg.skills_with_domains(skill_ids)
    return {str(r["id"]): r for r in rows}


def _criteria(requirements: Dict[str, SkillRequirement], terms: Dict[str, List[str]]) -> Dict[str, Any]:
    return {
        "skills": [
            {
                "skill_id": r.skill_id,
                "skill_name_ar": r.skill_name_ar,
                "skill_name_en": r.skill_name_en,
                "gap_score": r.gap_score,
                "proficiency": r.proficiency,
                "difficulty_tier": r.difficulty_tier.value,
                "admitted_levels": r.admitted_levels,
                "priority": r.priority,
                "domain_id": r.domain_id,
            }
            for r in requirements.values()
        ],
        "domains": [{"domain_id": d, "terms": t} for d, t in terms.items()],
    }


def _refresh_user_graph(user_id: str, requirements: Dict[str, SkillRequirement], gw: GraphGateway) -> None:
    """Writes the current gap state; failures only mean ranking sees the previous state."""
    try:
        user = pg.get_user(user_id) or {"id": user_id}
        sync.upsert_user(user, gateway=gw)
        sync.replace_user_gaps(user_id, requirements, gateway=gw, throttle=False)
    except GraphConfigError:
        raise
    except Exception as e:
        logger.warning("user_gap_refresh_failed", user_id=user_id, error=str(e))


def recommend(user_id: str, limit: int | None = None, gateway: GraphGateway | None = None) -> RecommendationResult:
    n = resolve_limit(limit)
    analysis = pg.latest_analysis(user_id)
    gaps = parse_gaps(_gap_records(analysis["gaps"])) if analysis else []
    if not gaps:
        logger.info("recommendation_no_assessment", user_id=user_id)
        return RecommendationResult(status="no_assessment", user_id=user_id)

    analyzed_at = analysis.get("analyzed_at")
    requirements = translate_gaps(gaps, _skill_domains([g.skill_id for g in gaps]))
    if not requirements:
        return RecommendationResult(status="no_matches", user_id=user_id, analyzed_at=analyzed_at)

    terms = resolve_domain_terms(requirements)
    gw = gateway or graph_gateway.get_gateway()
    _refresh_user_graph(user_id, requirements, gw)

    ranking = rank_courses(user_id, requirements, limit=n, gateway=gw)
    courses = merge_with_catalog(ranking.courses)
    logger.info(
        "recommendation_done",
        user_id=user_id,
        query_path=ranking.query_path,
        ranked=len(ranking.courses),
        returned=len(courses),
    )
    return RecommendationResult(
        status="ok" if courses else "no_matches",
        user_id=user_id,
        analyzed_at=analyzed_at,
        query_path=ranking.query_path,
        recommendations=courses,
        filtering_criteria=_criteria(requirements, terms),
    )
