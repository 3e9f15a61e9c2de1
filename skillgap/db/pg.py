from typing import Any, Dict, List, Sequence

import psycopg2
from psycopg2.extras import RealDictCursor

from skillgap.config.settings import settings

SYNC_STATES = ("pending", "deleting", "creating", "synced", "failed")

_COURSE_COLUMNS = (
    "c.id::text AS id, c.name_ar, c.name_en, c.description_ar, c.description_en, c.url, c.provider, "
    "c.duration_hours, c.difficulty_level, c.language, c.subject, c.subtitle, c.university, "
    "c.skill_tags, c.synced_to_neo4j, c.last_synced_at"
)


def get_conn():
    dsn = str(settings.pg_dsn)
    if not dsn:
        raise RuntimeError("PG_DSN is not configured")
    return psycopg2.connect(dsn)


def _fetchall(sql: str, params: Sequence[Any] = ()) -> List[Dict]:
    conn = get_conn()
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(sql, params)
            return [dict(r) for r in cur.fetchall()]
    finally:
        conn.close()


def _fetchone(sql: str, params: Sequence[Any] = ()) -> Dict | None:
    rows = _fetchall(sql, params)
    return rows[0] if rows else None


def _execute(sql: str, params: Sequence[Any] = ()) -> int:
    conn = get_conn()
    conn.autocommit = True
    try:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.rowcount
    finally:
        conn.close()


def ensure_sync_columns() -> None:
    conn = get_conn()
    conn.autocommit = True
    try:
        with conn.cursor() as cur:
            cur.execute("ALTER TABLE courses ADD COLUMN IF NOT EXISTS synced_to_neo4j BOOLEAN DEFAULT false")
            cur.execute("ALTER TABLE courses ADD COLUMN IF NOT EXISTS last_synced_at TIMESTAMP")
            cur.execute("ALTER TABLE courses ADD COLUMN IF NOT EXISTS sync_state TEXT DEFAULT 'pending'")
            cur.execute("ALTER TABLE courses ADD COLUMN IF NOT EXISTS last_sync_error TEXT")
            cur.execute("ALTER TABLE courses ADD COLUMN IF NOT EXISTS skill_tags TEXT[]")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_courses_synced ON courses(synced_to_neo4j, last_synced_at)")
    finally:
        conn.close()


def latest_analysis(user_id: str) -> Dict | None:
    return _fetchone(
        "SELECT gaps, analyzed_at FROM analysis_results WHERE user_id::text=%s ORDER BY analyzed_at DESC LIMIT 1",
        (user_id,),
    )


def get_user(user_id: str) -> Dict | None:
    return _fetchone(
        "SELECT id::text AS id, name_ar, name_en, email, role, department_id::text AS department_id FROM users WHERE id::text=%s",
        (user_id,),
    )


def skills_with_domains(skill_ids: List[str]) -> List[Dict]:
    if not skill_ids:
        return []
    return _fetchall(
        """
        SELECT s.id::text AS id, s.name_ar, s.name_en, s.description_ar, s.weight,
               td.id::text AS domain_id, td.name_ar AS domain_name_ar, td.name_en AS domain_name_en
        FROM skills s
        LEFT JOIN training_domains td ON s.domain_id = td.id
        WHERE s.id::text = ANY(%s)
        """,
        (list(skill_ids),),
    )


def list_skills() -> List[Dict]:
    return _fetchall("SELECT id::text AS id, name_ar, name_en, description_ar, weight FROM skills ORDER BY name_ar")


def get_domains(domain_ids: List[str]) -> List[Dict]:
    if not domain_ids:
        return []
    return _fetchall(
        "SELECT id::text AS id, name_ar, name_en FROM training_domains WHERE id::text = ANY(%s)",
        (list(domain_ids),),
    )


def domain_synonyms(domain_ids: List[str]) -> List[Dict]:
    if not domain_ids:
        return []
    return _fetchall(
        "SELECT domain_id::text AS domain_id, synonym_ar, synonym_en FROM domain_synonyms WHERE domain_id::text = ANY(%s) ORDER BY created_at",
        (list(domain_ids),),
    )


def get_course(course_id: str) -> Dict | None:
    return _fetchone(f"SELECT {_COURSE_COLUMNS} FROM courses c WHERE c.id::text=%s", (course_id,))


def get_course_skills(course_id: str) -> List[Dict]:
    return _fetchall(
        """
        SELECT s.id::text AS id, s.name_ar, s.name_en, s.description_ar, s.weight, cs.relevance_score
        FROM course_skills cs
        JOIN skills s ON cs.skill_id = s.id
        WHERE cs.course_id::text=%s
        ORDER BY s.name_ar
        """,
        (course_id,),
    )


def list_unsynced_course_ids() -> List[str]:
    rows = _fetchall(
        "SELECT id::text AS id FROM courses WHERE synced_to_neo4j = false OR synced_to_neo4j IS NULL ORDER BY created_at"
    )
    return [r["id"] for r in rows]


def set_course_sync_state(course_id: str, state: str, error: str | None = None) -> None:
    if state not in SYNC_STATES:
        raise ValueError(f"unknown sync state {state}")
    if state == "synced":
        _execute(
            "UPDATE courses SET sync_state=%s, synced_to_neo4j=true, last_synced_at=CURRENT_TIMESTAMP, last_sync_error=NULL WHERE id::text=%s",
            (state, course_id),
        )
    else:
        _execute(
            "UPDATE courses SET sync_state=%s, synced_to_neo4j=false, last_sync_error=%s WHERE id::text=%s",
            (state, error, course_id),
        )


def mark_courses_unsynced(course_ids: List[str]) -> int:
    if not course_ids:
        return 0
    return _execute(
        "UPDATE courses SET synced_to_neo4j=false, sync_state='pending' WHERE id::text = ANY(%s)",
        (list(course_ids),),
    )


def update_relevance_score(course_id: str, skill_id: str, score: float) -> None:
    _execute(
        "UPDATE course_skills SET relevance_score=%s WHERE course_id::text=%s AND skill_id::text=%s",
        (score, course_id, skill_id),
    )


def list_course_skill_pairs() -> List[Dict]:
    return _fetchall(
        """
        SELECT cs.course_id::text AS course_id, cs.skill_id::text AS skill_id, cs.relevance_score,
               c.name_ar AS course_name_ar, c.name_en AS course_name_en,
               c.description_ar AS course_description_ar, c.description_en AS course_description_en,
               c.skill_tags AS course_skill_tags,
               s.name_ar AS skill_name_ar, s.name_en AS skill_name_en
        FROM course_skills cs
        JOIN courses c ON cs.course_id = c.id
        JOIN skills s ON cs.skill_id = s.id
        ORDER BY c.name_ar
        """
    )


def courses_by_ids(course_ids: List[str]) -> Dict[str, Dict]:
    if not course_ids:
        return {}
    rows = _fetchall(
        f"""
        SELECT {_COURSE_COLUMNS},
               json_agg(json_build_object('id', s.id, 'name_ar', s.name_ar, 'name_en', s.name_en))
                 FILTER (WHERE s.id IS NOT NULL) AS skills
        FROM courses c
        LEFT JOIN course_skills cs ON c.id = cs.course_id
        LEFT JOIN skills s ON cs.skill_id = s.id
        WHERE c.id::text = ANY(%s)
        GROUP BY c.id
        """,
        (list(course_ids),),
    )
    return {r["id"]: r for r in rows}


def course_enrichments(course_ids: List[str]) -> Dict[str, Dict]:
    if not course_ids:
        return {}
    rows = _fetchall(
        """
        SELECT course_id, extracted_skills, learning_outcomes, target_audience, career_paths,
               quality_indicators, summary_ar, summary_en
        FROM course_enrichments
        WHERE course_id::text = ANY(%s)
        """,
        (list(course_ids),),
    )
    return {str(r.pop("course_id")): r for r in rows}
