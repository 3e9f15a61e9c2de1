from fastapi import APIRouter, Query

from skillgap.api.common import ApiError
from skillgap.services.recommendations import RecommendationResult, recommend

router = APIRouter(prefix="/v1/recommendations", tags=["Recommendations"])


@router.get(
    "/{user_id}",
    summary="Course recommendations",
    description="Ranks courses for the user's latest skill gaps through the User-Skill-Course graph.",
    response_model=RecommendationResult,
    responses={
        500: {"model": ApiError, "description": "Graph gateway credentials are not configured"},
        503: {"model": ApiError, "description": "Recommendation source unavailable"},
    },
)
def get_recommendations(user_id: str, limit: int | None = Query(None, ge=1)) -> RecommendationResult:
    """
    Accepts:
      - user_id: employee id
      - limit: maximum number of courses (capped by RECOMMENDATION_MAX_LIMIT)

    Returns:
      - status: ok | no_assessment | no_matches
      - query_path: filtered | fallback | none
      - recommendations: catalog courses with recommendation_score, matching_skills, max_priority
      - filtering_criteria: per-skill tiers and domain search terms
    """
    return recommend(user_id, limit)
