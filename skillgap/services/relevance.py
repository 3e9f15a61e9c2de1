from typing import Any, Dict, List

BASE = 0.5
TITLE_BONUS = 0.5
DESCRIPTION_BONUS = 0.2
TAG_BONUS = 0.3
MIN_SCORE = 0.5
MAX_SCORE = 1.5


def _lower(v: Any) -> str:
    return str(v).lower() if v else ""


def _mentions(text: str, names: List[str]) -> bool:
    return any(n in text for n in names)


def relevance_score(course: Dict[str, Any], skill: Dict[str, Any]) -> float:
    """Weight of a Course -> Skill edge from where the skill name shows up in the course text.

    Title (Arabic + English name) +0.5, description +0.2, explicit skill tag +0.3,
    on top of 0.5. Blank skill names never match anything.
    """
    names = [n for n in (_lower(skill.get("name_ar")).strip(), _lower(skill.get("name_en")).strip()) if n]
    score = BASE
    if names:
        title = f"{_lower(course.get('name_ar'))} {_lower(course.get('name_en'))}"
        description = f"{_lower(course.get('description_ar'))} {_lower(course.get('description_en'))}"
        tags = [_lower(t) for t in (course.get("skill_tags") or []) if t]
        if _mentions(title, names):
            score += TITLE_BONUS
        if _mentions(description, names):
            score += DESCRIPTION_BONUS
        if any(_mentions(tag, names) for tag in tags):
            score += TAG_BONUS
    return round(max(MIN_SCORE, min(MAX_SCORE, score)), 4)
