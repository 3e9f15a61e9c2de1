import time
from typing import Any, Dict, List

from prometheus_client import Counter
from pydantic import BaseModel, Field

from skillgap.config.settings import settings
from skillgap.core.errors import CourseNotFound, GraphConfigError
from skillgap.core.logging import logger
from skillgap.db import pg
from skillgap.services.gaps import SkillRequirement
from skillgap.services.graph import gateway as graph_gateway
from skillgap.services.graph.gateway import GraphGateway
from skillgap.services.relevance import relevance_score

COURSE_SYNC_TOTAL = Counter("course_sync_total", "Course graph sync attempts total", ["outcome"])

COURSE = ("Course", "course_id")
SKILL = ("Skill", "skill_id")
USER = ("User", "user_id")
ALIGNS_TO_SKILL = "ALIGNS_TO_SKILL"
NEEDS = "NEEDS"


class SyncOutcome(BaseModel):
    course_id: str
    state: str
    synced: bool
    skills_linked: int = 0
    error: str | None = None


class SyncTally(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)


def _throttle() -> None:
    if settings.sync_throttle_seconds > 0:
        time.sleep(settings.sync_throttle_seconds)


def _float(v: Any, default: float) -> float:
    try:
        return float(v) if v not in (None, "") else default
    except (TypeError, ValueError):
        return default


def course_props(course: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name_ar": course.get("name_ar") or "",
        "name_en": course.get("name_en") or "",
        "description_ar": course.get("description_ar") or "",
        "description_en": course.get("description_en") or "",
        "url": course.get("url") or "",
        "provider": course.get("provider") or "",
        "duration_hours": _float(course.get("duration_hours"), 0.0),
        "difficulty_level": course.get("difficulty_level") or "beginner",
        "language": course.get("language") or "ar",
        "subject": course.get("subject") or "",
        "subtitle": course.get("subtitle") or "",
        "university": course.get("university") or "",
    }


def skill_props(skill: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name_ar": skill.get("name_ar") or "",
        "name_en": skill.get("name_en") or "",
        "description_ar": skill.get("description_ar") or "",
        "weight": _float(skill.get("weight"), 1.0),
    }


def user_props(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name_ar": user.get("name_ar") or "",
        "name_en": user.get("name_en") or "",
        "email": user.get("email") or "",
        "role": user.get("role") or "",
        "department_id": user.get("department_id") or "",
    }


def upsert_course(course_id: str, gateway: GraphGateway | None = None) -> SyncOutcome:
    """Rebuild one course node and its skill edges from the catalog.

    deleting -> creating -> synced, each state written to the course row before
    the graph calls it covers. Graph and catalog failures end in ``failed`` with
    the error stored; only a missing course or missing gateway config raise.
    """
    course = pg.get_course(course_id)
    if not course:
        raise CourseNotFound(course_id)
    gw = gateway or graph_gateway.get_gateway()
    state = "deleting"
    linked = 0
    try:
        pg.set_course_sync_state(course_id, state)
        gw.delete_relationships(*COURSE, course_id)
        _throttle()
        gw.delete_node(*COURSE, course_id)
        _throttle()

        state = "creating"
        pg.set_course_sync_state(course_id, state)
        gw.create_node(*COURSE, course_id, course_props(course))
        _throttle()
        for skill in pg.get_course_skills(course_id):
            gw.create_node(*SKILL, skill["id"], skill_props(skill))
            _throttle()
            score = relevance_score(course, skill)
            if skill.get("relevance_score") is None or abs(_float(skill.get("relevance_score"), 0.0) - score) > 1e-6:
                pg.update_relevance_score(course_id, skill["id"], score)
            gw.create_relationship(*COURSE, course_id, ALIGNS_TO_SKILL, *SKILL, skill["id"], {"relevance_score": score})
            _throttle()
            linked += 1

        pg.set_course_sync_state(course_id, "synced")
    except GraphConfigError:
        raise
    except Exception as e:
        COURSE_SYNC_TOTAL.labels(outcome="failed").inc()
        logger.error("course_sync_failed", course_id=course_id, state=state, skills_linked=linked, error=str(e))
        try:
            pg.set_course_sync_state(course_id, "failed", error=f"{state}: {e}")
        except Exception as mark_err:
            logger.error("course_sync_state_write_failed", course_id=course_id, error=str(mark_err))
        return SyncOutcome(course_id=course_id, state="failed", synced=False, skills_linked=linked, error=str(e))
    COURSE_SYNC_TOTAL.labels(outcome="synced").inc()
    logger.info("course_synced", course_id=course_id, skills_linked=linked)
    return SyncOutcome(course_id=course_id, state="synced", synced=True, skills_linked=linked)


def bulk_sync(gateway: GraphGateway | None = None) -> SyncTally:
    ids = pg.list_unsynced_course_ids()
    tally = SyncTally(total=len(ids))
    if not ids:
        return tally
    gw = gateway or graph_gateway.get_gateway()
    for course_id in ids:
        try:
            outcome = upsert_course(course_id, gateway=gw)
        except CourseNotFound as e:
            outcome = SyncOutcome(course_id=course_id, state="failed", synced=False, error=str(e))
        if outcome.synced:
            tally.success += 1
        else:
            tally.failed += 1
            tally.errors.append({"course_id": course_id, "error": outcome.error})
    logger.info("bulk_sync_done", total=tally.total, success=tally.success, failed=tally.failed)
    return tally


def upsert_skill(skill: Dict[str, Any], gateway: GraphGateway | None = None) -> None:
    """Create or replace the skill node; its edges belong to courses and users and are left alone."""
    gw = gateway or graph_gateway.get_gateway()
    gw.create_node(*SKILL, skill["id"], skill_props(skill))


def sync_all_skills(gateway: GraphGateway | None = None) -> SyncTally:
    skills = pg.list_skills()
    tally = SyncTally(total=len(skills))
    if not skills:
        return tally
    gw = gateway or graph_gateway.get_gateway()
    for skill in skills:
        try:
            upsert_skill(skill, gateway=gw)
            tally.success += 1
        except GraphConfigError:
            raise
        except Exception as e:
            tally.failed += 1
            tally.errors.append({"skill_id": skill["id"], "skill_name": skill.get("name_ar"), "error": str(e)})
            logger.error("skill_sync_failed", skill_id=skill["id"], error=str(e))
        _throttle()
    logger.info("skill_sync_done", total=tally.total, success=tally.success, failed=tally.failed)
    return tally


def upsert_user(user: Dict[str, Any], gateway: GraphGateway | None = None) -> None:
    gw = gateway or graph_gateway.get_gateway()
    gw.create_node(*USER, user["id"], user_props(user))


def replace_user_gaps(
    user_id: str,
    requirements: Dict[str, SkillRequirement],
    gateway: GraphGateway | None = None,
    throttle: bool = True,
) -> Dict[str, int]:
    """Drop every relationship of the user node, then write one NEEDS edge per requirement.

    A failure deleting the old edges propagates: writing new edges on top of stale
    ones would merge gap states. Individual edge failures are logged and counted.
    Request-path callers pass ``throttle=False``; only maintenance sync is paced.
    """
    gw = gateway or graph_gateway.get_gateway()
    gw.delete_relationships(*USER, user_id)
    result = {"created": 0, "failed": 0}
    for req in requirements.values():
        if throttle:
            _throttle()
        try:
            gw.create_relationship(
                *USER, user_id, NEEDS, *SKILL, req.skill_id,
                {"gap_score": float(req.gap_score), "priority": int(req.priority)},
            )
            result["created"] += 1
        except GraphConfigError:
            raise
        except Exception as e:
            result["failed"] += 1
            logger.warning("needs_edge_failed", user_id=user_id, skill_id=req.skill_id, error=str(e))
    logger.info("user_gaps_replaced", user_id=user_id, **result)
    return result


def remove_course(course_id: str, gateway: GraphGateway | None = None) -> Dict[str, Any]:
    gw = gateway or graph_gateway.get_gateway()
    gw.delete_relationships(*COURSE, course_id)
    _throttle()
    gw.delete_node(*COURSE, course_id)
    if pg.get_course(course_id):
        pg.set_course_sync_state(course_id, "pending")
    logger.info("course_removed_from_graph", course_id=course_id)
    return {"course_id": course_id, "removed": True}


def recalculate_relevance_scores() -> Dict[str, int]:
    """Recompute every stored course/skill relevance from current catalog text.

    Courses whose scores moved are flagged unsynced so the repair job re-pushes
    their edges.
    """
    pairs = pg.list_course_skill_pairs()
    updated = 0
    unchanged = 0
    changed_courses: List[str] = []
    for row in pairs:
        course = {
            "name_ar": row.get("course_name_ar"),
            "name_en": row.get("course_name_en"),
            "description_ar": row.get("course_description_ar"),
            "description_en": row.get("course_description_en"),
            "skill_tags": row.get("course_skill_tags"),
        }
        skill = {"name_ar": row.get("skill_name_ar"), "name_en": row.get("skill_name_en")}
        old = _float(row.get("relevance_score"), 1.0)
        new = relevance_score(course, skill)
        if abs(new - old) > 0.01:
            pg.update_relevance_score(row["course_id"], row["skill_id"], new)
            updated += 1
            if row["course_id"] not in changed_courses:
                changed_courses.append(row["course_id"])
        else:
            unchanged += 1
    marked = pg.mark_courses_unsynced(changed_courses)
    logger.info("relevance_recalculated", total=len(pairs), updated=updated, unchanged=unchanged)
    return {"total": len(pairs), "updated": updated, "unchanged": unchanged, "courses_marked": marked}
