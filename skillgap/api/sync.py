from typing import Dict

from fastapi import APIRouter
from pydantic import BaseModel

from skillgap.api.common import ApiError
from skillgap.services.graph import sync
from skillgap.services.graph.sync import SyncOutcome, SyncTally

router = APIRouter(prefix="/v1/sync", tags=["Graph sync"])


class RemovedResponse(BaseModel):
    course_id: str
    removed: bool


class RecalculationResponse(BaseModel):
    total: int
    updated: int
    unchanged: int
    courses_marked: int


@router.post(
    "/courses/{course_id}",
    summary="Sync one course",
    description="Rebuilds the course node and its ALIGNS_TO_SKILL edges from the catalog.",
    response_model=SyncOutcome,
    responses={404: {"model": ApiError, "description": "Course not found"}},
)
def sync_course(course_id: str) -> SyncOutcome:
    return sync.upsert_course(course_id)


@router.post(
    "/courses",
    summary="Sync unsynced courses",
    description="Pushes every course with synced_to_neo4j = false, one at a time; failures are tallied, not raised.",
    response_model=SyncTally,
)
def sync_courses() -> SyncTally:
    return sync.bulk_sync()


@router.delete(
    "/courses/{course_id}",
    summary="Remove course from graph",
    response_model=RemovedResponse,
    responses={503: {"model": ApiError, "description": "Graph gateway unavailable"}},
)
def remove_course(course_id: str) -> Dict:
    return sync.remove_course(course_id)


@router.post("/skills", summary="Sync all skills", response_model=SyncTally)
def sync_skills() -> SyncTally:
    return sync.sync_all_skills()


@router.post(
    "/relevance/recalculate",
    summary="Recalculate relevance scores",
    description="Recomputes course/skill relevance from catalog text and flags changed courses for resync.",
    response_model=RecalculationResponse,
)
def recalculate_relevance() -> Dict:
    return sync.recalculate_relevance_scores()
