from skillgap.services import synonyms
from skillgap.services.gaps import SkillGap, translate_gaps


class Recorder:
    def __init__(self):
        self.events = []

    def warning(self, event, **kw):
        self.events.append(event)


def requirements(catalog):
    catalog.add_domain("D1", "البرمجة", "Programming")
    catalog.add_domain("D2", "التسويق", "Marketing")
    catalog.add_skill("S1", "بايثون", "Python", domain_id="D1")
    catalog.add_skill("S2", "جافا", "Java", domain_id="D1")
    catalog.add_skill("S3", "الإعلان", "Ads", domain_id="D2")
    rows = {r["id"]: r for r in catalog.skills_with_domains(["S1", "S2", "S3"])}
    gaps = [SkillGap(skill_id=s, gap_score=50) for s in ("S1", "S2", "S3")]
    return translate_gaps(gaps, rows)


def test_terms_include_names_and_synonyms_deduplicated(catalog):
    reqs = requirements(catalog)
    catalog.synonyms = [
        {"domain_id": "D1", "synonym_ar": "تطوير البرمجيات", "synonym_en": "Software Development"},
        {"domain_id": "D1", "synonym_ar": "البرمجة", "synonym_en": "Coding"},
        {"domain_id": "D1", "synonym_ar": "هندسة البرمجيات", "synonym_en": None},
    ]
    terms = synonyms.resolve_domain_terms(reqs)
    assert terms == {
        "D1": ["البرمجة", "Programming", "تطوير البرمجيات", "Software Development", "Coding", "هندسة البرمجيات"],
        "D2": ["التسويق", "Marketing"],
    }
    assert catalog.synonym_lookups == 1


def test_missing_synonym_table_degrades_and_warns_once(catalog, monkeypatch, missing_table_error):
    rec = Recorder()
    monkeypatch.setattr(synonyms, "logger", rec)
    monkeypatch.setattr(synonyms, "_synonym_warning_logged", False)
    catalog.synonyms_error = missing_table_error
    reqs = requirements(catalog)
    first = synonyms.resolve_domain_terms(reqs)
    second = synonyms.resolve_domain_terms(reqs)
    assert first == second == {"D1": ["البرمجة", "Programming"], "D2": ["التسويق", "Marketing"]}
    assert rec.events == ["domain_synonyms_unavailable"]


def test_requirements_without_domain_need_no_lookup(catalog):
    reqs = translate_gaps([SkillGap(skill_id="S9", gap_score=40)])
    assert synonyms.resolve_domain_terms(reqs) == {}
    assert catalog.synonym_lookups == 0


def test_domain_match_condition_is_parameterized():
    clause, params = synonyms.domain_match_condition(["Data", " data ", "", "تحليل"])
    assert "$terms" in clause and "toLower" in clause
    assert params == {"terms": ["Data", "تحليل"]}
