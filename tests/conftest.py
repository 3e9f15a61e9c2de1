import copy
from typing import Any, Callable, Dict, List, Tuple

import psycopg2
import pytest

from skillgap.config.settings import settings
from skillgap.core.errors import GraphRequestError
from skillgap.db import pg
from skillgap.services.graph import gateway as graph_gateway
from skillgap.services.graph.cypher import CypherQuery


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("GRAPH_CLIENT_ID", "test-client")
    monkeypatch.setenv("GRAPH_CLIENT_SECRET", "test-secret")
    monkeypatch.setenv("PG_DSN", "")
    monkeypatch.setattr(settings, "sync_throttle_seconds", 0.0)


EdgeKey = Tuple[str, str, str, str, str]


class FakeGateway:
    """In-memory stand-in for the graph gateway.

    Nodes are keyed by (label, id), edges by (from_label, from_id, rel_type,
    to_label, to_id); both are create-or-replace like the real /node and
    /relationship endpoints. ``run`` evaluates the recommendation and domain
    search traversals from the query params.
    """

    def __init__(self):
        self.nodes: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.edges: Dict[EdgeKey, Dict[str, Any]] = {}
        self.queries: List[CypherQuery] = []
        self.calls: List[str] = []
        self._failures: List[Tuple[str, Callable[..., bool], Exception]] = []

    def fail_when(self, op: str, predicate: Callable[..., bool] = lambda *a: True, exc: Exception | None = None):
        self._failures.append((op, predicate, exc or GraphRequestError("injected failure", status=400)))

    def _check(self, op: str, *args):
        self.calls.append(op)
        for fop, pred, exc in self._failures:
            if fop == op and pred(*args):
                raise exc

    def create_node(self, label, id_key, id_value, props):
        self._check("node", label, id_value, props)
        self.nodes[(label, str(id_value))] = dict(props, **{id_key: id_value})

    def create_relationship(self, from_label, from_key, from_id, rel_type, to_label, to_key, to_id, props=None):
        self._check("relationship", from_label, from_id, rel_type, to_label, to_id)
        if (from_label, str(from_id)) not in self.nodes or (to_label, str(to_id)) not in self.nodes:
            raise GraphRequestError("endpoint node missing", status=404)
        self.edges[(from_label, str(from_id), rel_type, to_label, str(to_id))] = dict(props or {})

    def delete_relationships(self, label, key, value):
        self._check("delete_relationships", label, value)
        ref = (label, str(value))
        self.edges = {
            k: v for k, v in self.edges.items() if (k[0], k[1]) != ref and (k[3], k[4]) != ref
        }

    def delete_node(self, label, key, value):
        self._check("delete_node", label, value)
        ref = (label, str(value))
        if any((k[0], k[1]) == ref or (k[3], k[4]) == ref for k in self.edges):
            raise GraphRequestError("node still has relationships", status=409)
        self.nodes.pop(ref, None)

    def snapshot(self):
        return copy.deepcopy(self.nodes), copy.deepcopy(self.edges)

    def link(self, course_id, skill_id, relevance):
        self.edges[("Course", course_id, "ALIGNS_TO_SKILL", "Skill", skill_id)] = {"relevance_score": relevance}

    def need(self, user_id, skill_id, gap_score, priority):
        self.edges[("User", user_id, "NEEDS", "Skill", skill_id)] = {"gap_score": gap_score, "priority": priority}

    def _matches(self, user_id: str):
        for (fl, fid, rel, _, sid), needs in self.edges.items():
            if fl != "User" or fid != user_id or rel != "NEEDS" or not needs.get("gap_score", 0) > 0:
                continue
            skill = self.nodes.get(("Skill", sid), {})
            for (cl, cid, crel, _, csid), aligns in self.edges.items():
                if cl != "Course" or crel != "ALIGNS_TO_SKILL" or csid != sid:
                    continue
                course = self.nodes.get(("Course", cid), {})
                yield course, skill, needs, aligns

    @staticmethod
    def _row(course, skill, needs, aligns):
        return {
            "course_id": course.get("course_id"),
            "skill_id": skill.get("skill_id"),
            "skill_name_ar": skill.get("name_ar"),
            "skill_name_en": skill.get("name_en"),
            "gap_score": needs.get("gap_score"),
            "priority": needs.get("priority"),
            "relevance_score": aligns.get("relevance_score"),
        }

    def run(self, query: CypherQuery):
        self._check("query", query)
        query.render()
        self.queries.append(query)
        p = query.params
        if query.name == "recommend_filtered":
            levels = {r["skill_id"]: r["levels"] for r in p["requirements"]}
            rows = []
            for course, skill, needs, aligns in self._matches(p["user_id"]):
                if skill.get("skill_id") not in levels:
                    continue
                diff = course.get("difficulty_level")
                if diff and diff.lower() not in levels[skill["skill_id"]]:
                    continue
                rows.append(self._row(course, skill, needs, aligns))
            return rows
        if query.name == "recommend_fallback":
            return [
                self._row(*m) for m in self._matches(p["user_id"]) if m[1].get("skill_id") in p["skill_ids"]
            ]
        if query.name == "domain_search":
            out = []
            for (label, cid), course in self.nodes.items():
                subject = (course.get("subject") or "").lower()
                if label != "Course" or not any(t.lower() in subject for t in p["terms"]):
                    continue
                skill_ids = sorted(k[4] for k in self.edges if k[:3] == ("Course", cid, "ALIGNS_TO_SKILL"))
                out.append({
                    "course_id": cid,
                    "name_ar": course.get("name_ar"),
                    "name_en": course.get("name_en"),
                    "subject": course.get("subject"),
                    "skill_ids": skill_ids,
                    "skill_coverage": len(skill_ids),
                })
            out.sort(key=lambda r: (-r["skill_coverage"], r["course_id"]))
            return out[: p["limit"]]
        raise AssertionError(f"unexpected query {query.name}")


class FakeCatalog:
    """Relational catalog held in dicts, installed over ``skillgap.db.pg``."""

    def __init__(self):
        self.courses: Dict[str, Dict[str, Any]] = {}
        self.skills: Dict[str, Dict[str, Any]] = {}
        self.course_skills: Dict[Tuple[str, str], float | None] = {}
        self.domains: Dict[str, Dict[str, Any]] = {}
        self.synonyms: List[Dict[str, Any]] = []
        self.synonyms_error: Exception | None = None
        self.synonym_lookups = 0
        self.analyses: Dict[str, Dict[str, Any]] = {}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.enrichments: Dict[str, Dict[str, Any]] = {}
        self.enrichments_error: Exception | None = None
        self.state_log: List[Tuple[str, str]] = []

    def add_course(self, course_id, skill_ids=(), relevance=None, **fields):
        row = {
            "id": course_id,
            "name_ar": fields.pop("name_ar", f"دورة {course_id}"),
            "name_en": fields.pop("name_en", f"Course {course_id}"),
            "description_ar": None,
            "description_en": None,
            "url": None,
            "provider": None,
            "duration_hours": None,
            "difficulty_level": None,
            "language": "ar",
            "subject": None,
            "subtitle": None,
            "university": None,
            "skill_tags": None,
            "synced_to_neo4j": False,
            "sync_state": "pending",
            "last_sync_error": None,
        }
        row.update(fields)
        self.courses[course_id] = row
        for sid in skill_ids:
            self.course_skills[(course_id, sid)] = relevance
        return row

    def add_skill(self, skill_id, name_ar="", name_en="", domain_id=None, weight=1.0):
        self.skills[skill_id] = {
            "id": skill_id,
            "name_ar": name_ar,
            "name_en": name_en,
            "description_ar": "",
            "weight": weight,
            "domain_id": domain_id,
        }

    def add_domain(self, domain_id, name_ar, name_en):
        self.domains[domain_id] = {"id": domain_id, "name_ar": name_ar, "name_en": name_en}

    def install(self, monkeypatch):
        for name in (
            "latest_analysis", "get_user", "skills_with_domains", "list_skills", "get_domains",
            "domain_synonyms", "get_course", "get_course_skills", "list_unsynced_course_ids",
            "set_course_sync_state", "mark_courses_unsynced", "update_relevance_score",
            "list_course_skill_pairs", "courses_by_ids", "course_enrichments",
        ):
            monkeypatch.setattr(pg, name, getattr(self, name))

    def latest_analysis(self, user_id):
        return self.analyses.get(user_id)

    def get_user(self, user_id):
        return self.users.get(user_id)

    def skills_with_domains(self, skill_ids):
        out = []
        for sid in skill_ids:
            s = self.skills.get(sid)
            if not s:
                continue
            d = self.domains.get(s["domain_id"]) or {}
            out.append(dict(s, domain_name_ar=d.get("name_ar"), domain_name_en=d.get("name_en")))
        return out

    def list_skills(self):
        return list(self.skills.values())

    def get_domains(self, domain_ids):
        return [self.domains[d] for d in domain_ids if d in self.domains]

    def domain_synonyms(self, domain_ids):
        self.synonym_lookups += 1
        if self.synonyms_error:
            raise self.synonyms_error
        return [s for s in self.synonyms if s["domain_id"] in domain_ids]

    def get_course(self, course_id):
        c = self.courses.get(course_id)
        return dict(c) if c else None

    def get_course_skills(self, course_id):
        return [
            dict(self.skills[sid], relevance_score=rel)
            for (cid, sid), rel in self.course_skills.items()
            if cid == course_id and sid in self.skills
        ]

    def list_unsynced_course_ids(self):
        return [cid for cid, c in self.courses.items() if not c["synced_to_neo4j"]]

    def set_course_sync_state(self, course_id, state, error=None):
        assert state in pg.SYNC_STATES
        self.state_log.append((course_id, state))
        c = self.courses[course_id]
        c["sync_state"] = state
        c["synced_to_neo4j"] = state == "synced"
        c["last_sync_error"] = None if state == "synced" else error

    def mark_courses_unsynced(self, course_ids):
        for cid in course_ids:
            self.courses[cid]["synced_to_neo4j"] = False
            self.courses[cid]["sync_state"] = "pending"
        return len(course_ids)

    def update_relevance_score(self, course_id, skill_id, score):
        self.course_skills[(course_id, skill_id)] = score

    def list_course_skill_pairs(self):
        out = []
        for (cid, sid), rel in self.course_skills.items():
            c, s = self.courses[cid], self.skills[sid]
            out.append({
                "course_id": cid,
                "skill_id": sid,
                "relevance_score": rel,
                "course_name_ar": c["name_ar"],
                "course_name_en": c["name_en"],
                "course_description_ar": c["description_ar"],
                "course_description_en": c["description_en"],
                "course_skill_tags": c["skill_tags"],
                "skill_name_ar": s["name_ar"],
                "skill_name_en": s["name_en"],
            })
        return out

    def courses_by_ids(self, course_ids):
        out = {}
        for cid in course_ids:
            if cid in self.courses:
                skills = [
                    {"id": sid, "name_ar": self.skills[sid]["name_ar"], "name_en": self.skills[sid]["name_en"]}
                    for (c, sid) in self.course_skills
                    if c == cid and sid in self.skills
                ]
                out[cid] = dict(self.courses[cid], skills=skills)
        return out

    def course_enrichments(self, course_ids):
        if self.enrichments_error:
            raise self.enrichments_error
        return {cid: self.enrichments[cid] for cid in course_ids if cid in self.enrichments}


@pytest.fixture
def fake_gateway(monkeypatch):
    gw = FakeGateway()
    monkeypatch.setattr(graph_gateway, "get_gateway", lambda: gw)
    return gw


@pytest.fixture
def catalog(monkeypatch):
    cat = FakeCatalog()
    cat.install(monkeypatch)
    return cat


@pytest.fixture
def missing_table_error():
    return psycopg2.ProgrammingError('relation "domain_synonyms" does not exist')
