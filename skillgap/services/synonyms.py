from typing import Any, Dict, Iterable, List, Tuple

import psycopg2

from skillgap.core.logging import logger
from skillgap.db import pg
from skillgap.services.gaps import SkillRequirement
from skillgap.services.graph.cypher import domain_match_clause

_synonym_warning_logged = False


def _dedupe(terms: Iterable[str | None]) -> List[str]:
    seen = set()
    out: List[str] = []
    for t in terms:
        if not t:
            continue
        t = str(t).strip()
        key = t.lower()
        if not t or key in seen:
            continue
        seen.add(key)
        out.append(t)
    return out


def load_synonyms(domain_ids: List[str]) -> Dict[str, List[str]]:
    """domain_id -> synonyms; an unavailable synonym table yields no synonyms."""
    global _synonym_warning_logged
    if not domain_ids:
        return {}
    try:
        rows = pg.domain_synonyms(domain_ids)
    except (psycopg2.Error, RuntimeError) as e:
        if not _synonym_warning_logged:
            logger.warning("domain_synonyms_unavailable", error=str(e))
            _synonym_warning_logged = True
        return {}
    out: Dict[str, List[str]] = {}
    for r in rows:
        bucket = out.setdefault(str(r["domain_id"]), [])
        bucket.append(r.get("synonym_ar"))
        bucket.append(r.get("synonym_en"))
    return {k: _dedupe(v) for k, v in out.items()}


def expand_domains(domains: Dict[str, Tuple[str | None, str | None]]) -> Dict[str, List[str]]:
    synonyms = load_synonyms(list(domains))
    return {
        domain_id: _dedupe([name_ar, name_en, *synonyms.get(domain_id, [])])
        for domain_id, (name_ar, name_en) in domains.items()
    }


def resolve_domain_terms(requirements: Dict[str, SkillRequirement]) -> Dict[str, List[str]]:
    domains: Dict[str, Tuple[str | None, str | None]] = {}
    for req in requirements.values():
        if req.domain_id and req.domain_id not in domains:
            domains[req.domain_id] = (req.domain_name_ar, req.domain_name_en)
    return expand_domains(domains)


def domain_match_condition(terms: List[str], param: str = "terms") -> Tuple[str, Dict[str, Any]]:
    return domain_match_clause(param), {param: _dedupe(terms)}
