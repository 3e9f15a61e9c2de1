import psycopg2

from skillgap.services.enrichment import merge_with_catalog
from skillgap.services.recommender import ScoredCourse


def scored(course_id, score, path="filtered"):
    return ScoredCourse(
        course_id=course_id,
        recommendation_score=score,
        base_score=score,
        skill_coverage=1,
        max_priority=3,
        matching_skills=["Python"],
        query_path=path,
    )


def test_keeps_rank_order_and_drops_unknown(catalog):
    catalog.add_skill("S1", "بايثون", "Python")
    catalog.add_course("C1", ["S1"], provider="NELC", duration_hours=4)
    catalog.add_course("C2", [])
    out = merge_with_catalog([scored("C2", 90), scored("GHOST", 80), scored("C1", 70)])
    assert [c.id for c in out] == ["C2", "C1"]
    c1 = out[1]
    assert c1.provider == "NELC"
    assert c1.duration_hours == 4.0
    assert c1.recommendation_score == 70
    assert c1.matching_skills == ["Python"]
    assert c1.max_priority == 3
    assert c1.query_path == "filtered"
    assert c1.skills == [{"id": "S1", "name_ar": "بايثون", "name_en": "Python"}]
    assert c1.enrichment is None


def test_attaches_enrichment_when_present(catalog):
    catalog.add_course("C1", [])
    catalog.enrichments["C1"] = {"summary_en": "Short summary", "career_paths": ["Analyst"]}
    [c] = merge_with_catalog([scored("C1", 10, "fallback")])
    assert c.enrichment["summary_en"] == "Short summary"
    assert c.query_path == "fallback"


def test_enrichment_failure_degrades(catalog):
    catalog.add_course("C1", [])
    catalog.enrichments_error = psycopg2.ProgrammingError('relation "course_enrichments" does not exist')
    [c] = merge_with_catalog([scored("C1", 10)])
    assert c.enrichment is None


def test_empty_ranking(catalog):
    assert merge_with_catalog([]) == []
