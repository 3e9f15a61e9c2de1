import math
from enum import StrEnum
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel, Field


class DifficultyTier(StrEnum):
    beginner = "beginner"
    intermediate = "intermediate"
    advanced = "advanced"


_ADMITS: Dict[DifficultyTier, tuple] = {
    DifficultyTier.advanced: (DifficultyTier.advanced, DifficultyTier.intermediate, DifficultyTier.beginner),
    DifficultyTier.intermediate: (DifficultyTier.intermediate, DifficultyTier.beginner),
    DifficultyTier.beginner: (DifficultyTier.beginner,),
}


class SkillGap(BaseModel):
    skill_id: str
    gap_score: float = Field(ge=0, le=100)
    priority: int | None = None
    skill_name_ar: str | None = None
    skill_name_en: str | None = None


class SkillRequirement(BaseModel):
    skill_id: str
    gap_score: float
    proficiency: float
    difficulty_tier: DifficultyTier
    priority: int
    domain_id: str | None = None
    domain_name_ar: str | None = None
    domain_name_en: str | None = None
    skill_name_ar: str | None = None
    skill_name_en: str | None = None

    @property
    def admitted_levels(self) -> List[str]:
        return admitted_levels(self.difficulty_tier)


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def tier_for_proficiency(proficiency: float) -> DifficultyTier:
    if proficiency >= 90:
        return DifficultyTier.advanced
    if proficiency >= 50:
        return DifficultyTier.intermediate
    return DifficultyTier.beginner


def admitted_levels(tier: DifficultyTier) -> List[str]:
    """A tier admits courses at its own level and every level below it."""
    return [t.value for t in _ADMITS[DifficultyTier(tier)]]


def default_priority(gap_score: float) -> int:
    return int(clamp(math.ceil(gap_score / 20), 1, 5))


def _number(v: Any) -> float:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(f) or math.isinf(f):
        return 0.0
    return f


def parse_gaps(raw: Iterable[Dict[str, Any]] | None) -> List[SkillGap]:
    """Reads the ``gaps`` JSON of an analysis row.

    Records may carry ``gap_score`` or ``gap_percentage``; records without a
    skill id are skipped.
    """
    out: List[SkillGap] = []
    for rec in raw or []:
        if not isinstance(rec, dict):
            continue
        sid = rec.get("skill_id")
        if not sid:
            continue
        score = rec.get("gap_score")
        if score is None:
            score = rec.get("gap_percentage")
        gap = clamp(_number(score), 0.0, 100.0)
        prio = rec.get("priority")
        try:
            prio = int(prio) if prio is not None else None
        except (TypeError, ValueError):
            prio = None
        out.append(
            SkillGap(
                skill_id=str(sid),
                gap_score=gap,
                priority=prio,
                skill_name_ar=rec.get("skill_name_ar"),
                skill_name_en=rec.get("skill_name_en"),
            )
        )
    return out


def translate_gaps(
    gaps: Iterable[SkillGap], skill_domains: Dict[str, Dict[str, Any]] | None = None
) -> Dict[str, SkillRequirement]:
    skill_domains = skill_domains or {}
    reqs: Dict[str, SkillRequirement] = {}
    for g in gaps:
        if g.gap_score <= 0:
            continue
        proficiency = clamp(100.0 - g.gap_score, 0.0, 100.0)
        info = skill_domains.get(g.skill_id) or {}
        reqs[g.skill_id] = SkillRequirement(
            skill_id=g.skill_id,
            gap_score=g.gap_score,
            proficiency=proficiency,
            difficulty_tier=tier_for_proficiency(proficiency),
            priority=g.priority if g.priority is not None else default_priority(g.gap_score),
            domain_id=info.get("domain_id"),
            domain_name_ar=info.get("domain_name_ar"),
            domain_name_en=info.get("domain_name_en"),
            skill_name_ar=g.skill_name_ar or info.get("name_ar"),
            skill_name_en=g.skill_name_en or info.get("name_en"),
        )
    return reqs
