from typing import Any, Dict, List

from prometheus_client import Counter
from pydantic import BaseModel, Field

from skillgap.core.errors import GraphRequestError, RecommendationSourceUnavailable
from skillgap.core.logging import logger
from skillgap.services.gaps import SkillRequirement, default_priority
from skillgap.services.graph import gateway as graph_gateway
from skillgap.services.graph.cypher import CypherQuery
from skillgap.services.graph.gateway import GraphGateway
from skillgap.services.synonyms import domain_match_condition

RECOMMENDATION_QUERY_PATH_TOTAL = Counter(
    "recommendation_query_path_total", "Recommendation results by query path", ["path"]
)

COVERAGE_BONUS = 0.15

_MATCH_RETURN = """
RETURN c.course_id AS course_id,
       s.skill_id AS skill_id,
       s.name_ar AS skill_name_ar,
       s.name_en AS skill_name_en,
       n.gap_score AS gap_score,
       n.priority AS priority,
       t.relevance_score AS relevance_score
"""

FILTERED_TEXT = (
    "MATCH (u:User {user_id: $user_id})-[n:NEEDS]->(s:Skill)<-[t:ALIGNS_TO_SKILL]-(c:Course)\n"
    "WHERE n.gap_score > 0\n"
    "  AND any(req IN $requirements WHERE req.skill_id = s.skill_id\n"
    "      AND (c.difficulty_level IS NULL OR c.difficulty_level = ''\n"
    "           OR toLower(c.difficulty_level) IN req.levels))"
    + _MATCH_RETURN
)

FALLBACK_TEXT = (
    "MATCH (u:User {user_id: $user_id})-[n:NEEDS]->(s:Skill)<-[t:ALIGNS_TO_SKILL]-(c:Course)\n"
    "WHERE n.gap_score > 0 AND s.skill_id IN $skill_ids"
    + _MATCH_RETURN
)


class SkillMatch(BaseModel):
    course_id: str
    skill_id: str
    skill_name: str
    gap_score: float
    priority: int
    relevance_score: float

    @property
    def match_score(self) -> float:
        return self.gap_score * self.relevance_score


class ScoredCourse(BaseModel):
    course_id: str
    recommendation_score: float
    base_score: float
    skill_coverage: int
    max_priority: int
    matching_skills: List[str] = Field(default_factory=list)
    query_path: str


class Ranking(BaseModel):
    query_path: str
    courses: List[ScoredCourse] = Field(default_factory=list)


def filtered_query(user_id: str, requirements: Dict[str, SkillRequirement]) -> CypherQuery:
    reqs = [{"skill_id": r.skill_id, "levels": r.admitted_levels} for r in requirements.values()]
    return CypherQuery(name="recommend_filtered", text=FILTERED_TEXT, params={"user_id": user_id, "requirements": reqs})


def fallback_query(user_id: str, requirements: Dict[str, SkillRequirement]) -> CypherQuery:
    return CypherQuery(
        name="recommend_fallback",
        text=FALLBACK_TEXT,
        params={"user_id": user_id, "skill_ids": list(requirements)},
    )


def recommendation_score(base_score: float, skill_coverage: int) -> float:
    """Each extra covered skill multiplies the base by another 15%."""
    return base_score * (1.0 + (max(skill_coverage, 1) - 1) * COVERAGE_BONUS)


def _num(row: Dict[str, Any], key: str, default: float | None = None) -> float:
    v = row.get(key)
    if v is None and default is not None:
        return default
    if isinstance(v, bool) or not isinstance(v, (int, float, str)):
        raise RecommendationSourceUnavailable(f"graph row has invalid {key}", details={"row": row})
    try:
        return float(v)
    except ValueError as e:
        raise RecommendationSourceUnavailable(f"graph row has invalid {key}", details={"row": row}) from e


def parse_matches(rows: List[Dict[str, Any]]) -> List[SkillMatch]:
    out: List[SkillMatch] = []
    for row in rows:
        if not row.get("course_id") or not row.get("skill_id"):
            raise RecommendationSourceUnavailable("graph row is missing course_id or skill_id", details={"row": row})
        gap = _num(row, "gap_score")
        prio = row.get("priority")
        out.append(
            SkillMatch(
                course_id=str(row["course_id"]),
                skill_id=str(row["skill_id"]),
                skill_name=row.get("skill_name_en") or row.get("skill_name_ar") or str(row["skill_id"]),
                gap_score=gap,
                priority=int(_num(row, "priority")) if prio is not None else default_priority(gap),
                relevance_score=_num(row, "relevance_score", 1.0),
            )
        )
    return out


def aggregate(matches: List[SkillMatch], query_path: str, limit: int) -> List[ScoredCourse]:
    per_course: Dict[str, Dict[str, SkillMatch]] = {}
    for m in matches:
        skills = per_course.setdefault(m.course_id, {})
        prev = skills.get(m.skill_id)
        if prev is None or m.match_score > prev.match_score:
            skills[m.skill_id] = m
    scored: List[ScoredCourse] = []
    for course_id, skills in per_course.items():
        base = sum(m.match_score for m in skills.values())
        coverage = len(skills)
        scored.append(
            ScoredCourse(
                course_id=course_id,
                recommendation_score=round(recommendation_score(base, coverage), 6),
                base_score=round(base, 6),
                skill_coverage=coverage,
                max_priority=max(m.priority for m in skills.values()),
                matching_skills=[m.skill_name for m in skills.values()],
                query_path=query_path,
            )
        )
    scored.sort(key=lambda c: (-c.recommendation_score, -c.max_priority, -c.skill_coverage, c.course_id))
    return scored[:limit]


def _read(gw: GraphGateway, query: CypherQuery) -> List[Dict[str, Any]]:
    try:
        return gw.run(query)
    except GraphRequestError as e:
        raise RecommendationSourceUnavailable(
            f"Graph gateway rejected {query.name}", status=e.status, details=e.details
        ) from e


def rank_courses(
    user_id: str,
    requirements: Dict[str, SkillRequirement],
    limit: int = 10,
    gateway: GraphGateway | None = None,
) -> Ranking:
    """Filtered traversal first; the unfiltered one runs whenever the first ranks nothing."""
    if not requirements:
        return Ranking(query_path="none")
    gw = gateway or graph_gateway.get_gateway()
    courses = aggregate(parse_matches(_read(gw, filtered_query(user_id, requirements))), "filtered", limit)
    path = "filtered"
    if not courses:
        logger.info("recommendation_fallback", user_id=user_id, skills=len(requirements))
        path = "fallback"
        courses = aggregate(parse_matches(_read(gw, fallback_query(user_id, requirements))), "fallback", limit)
    RECOMMENDATION_QUERY_PATH_TOTAL.labels(path=path).inc()
    logger.info("recommendation_ranked", user_id=user_id, query_path=path, courses=len(courses))
    return Ranking(query_path=path, courses=courses)


def domain_search_query(terms: List[str], limit: int) -> CypherQuery:
    clause, params = domain_match_condition(terms)
    text = (
        "MATCH (c:Course)\n"
        f"WHERE {clause}\n"
        "OPTIONAL MATCH (c)-[t:ALIGNS_TO_SKILL]->(s:Skill)\n"
        "WITH c, collect(DISTINCT s.skill_id) AS skill_ids, count(DISTINCT s) AS skill_coverage\n"
        "RETURN c.course_id AS course_id, c.name_ar AS name_ar, c.name_en AS name_en,\n"
        "       c.subject AS subject, skill_ids, skill_coverage\n"
        "ORDER BY skill_coverage DESC, course_id\n"
        "LIMIT $limit"
    )
    params["limit"] = int(limit)
    return CypherQuery(name="domain_search", text=text, params=params)


def search_courses_by_domain(
    terms: List[str], limit: int = 10, gateway: GraphGateway | None = None
) -> List[Dict[str, Any]]:
    query = domain_search_query(terms, limit)
    if not query.params["terms"]:
        return []
    gw = gateway or graph_gateway.get_gateway()
    out: List[Dict[str, Any]] = []
    for row in _read(gw, query):
        if not row.get("course_id"):
            raise RecommendationSourceUnavailable("domain search row is missing course_id", details={"row": row})
        out.append(
            {
                "course_id": str(row["course_id"]),
                "name_ar": row.get("name_ar"),
                "name_en": row.get("name_en"),
                "subject": row.get("subject"),
                "skill_ids": [str(s) for s in (row.get("skill_ids") or [])],
                "skill_coverage": int(_num(row, "skill_coverage", 0)),
            }
        )
    return out

