import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PARAM = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)")


def identifier(name: str) -> str:
    """Labels, property keys and relationship types are never taken as values."""
    if not isinstance(name, str) or not _IDENT.match(name):
        raise ValueError(f"invalid graph identifier: {name!r}")
    return name


def _escape(s: str) -> str:
    return s.replace("\\", "\\\\").replace("'", "\\'").replace("\n", "\\n").replace("\r", "\\r")


def literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError("non-finite number cannot be rendered")
        return repr(value)
    if isinstance(value, str):
        return "'" + _escape(value) + "'"
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value) if isinstance(value, (set, frozenset)) else value
        return "[" + ", ".join(literal(v) for v in items) + "]"
    if isinstance(value, dict):
        return "{" + ", ".join(f"{identifier(k)}: {literal(v)}" for k, v in value.items()) + "}"
    raise TypeError(f"unsupported parameter type: {type(value).__name__}")


@dataclass(frozen=True)
class CypherQuery:
    """Query shape plus values kept apart until the gateway boundary.

    The gateway only accepts a single query string, so ``render`` inlines each
    ``$param`` as an escaped literal. Values never reach the text any other way.
    """

    name: str
    text: str
    params: Dict[str, Any] = field(default_factory=dict)

    def render(self) -> str:
        def _sub(m: re.Match) -> str:
            key = m.group(1)
            if key not in self.params:
                raise KeyError(f"query {self.name} is missing parameter {key}")
            return literal(self.params[key])

        return _PARAM.sub(_sub, self.text)


def delete_relationships(label: str, key: str, value: Any) -> CypherQuery:
    return CypherQuery(
        name="delete_relationships",
        text=f"MATCH (n:{identifier(label)} {{{identifier(key)}: $id}})-[r]-() DELETE r",
        params={"id": value},
    )


def delete_node(label: str, key: str, value: Any) -> CypherQuery:
    return CypherQuery(
        name="delete_node",
        text=f"MATCH (n:{identifier(label)} {{{identifier(key)}: $id}}) DELETE n",
        params={"id": value},
    )


def domain_match_clause(terms_param: str = "terms", var: str = "c") -> str:
    """Case-insensitive ``subject CONTAINS`` over a list parameter of terms."""
    return (
        f"any(term IN ${identifier(terms_param)} "
        f"WHERE toLower(coalesce({identifier(var)}.subject, '')) CONTAINS toLower(term))"
    )
