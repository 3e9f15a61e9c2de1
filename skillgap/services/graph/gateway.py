import time
from typing import Any, Dict, List

import httpx
from prometheus_client import Counter

from skillgap.config.settings import settings
from skillgap.core.correlation import get_correlation_id
from skillgap.core.errors import GraphConfigError, GraphRequestError, RecommendationSourceUnavailable
from skillgap.core.logging import logger
from skillgap.services.graph.cypher import CypherQuery, delete_node, delete_relationships, identifier
from skillgap.services.graph.token_cache import TokenCache, get_token_cache

GRAPH_REQUESTS_TOTAL = Counter("graph_requests_total", "Graph gateway requests total", ["op", "outcome"])


class GraphGateway:
    """HTTP client for the external graph query gateway.

    Every call carries the ``is_prod`` flag and a bearer token from the shared
    token cache. Failures surface as typed errors: transport problems, 5xx and
    unreadable payloads as ``RecommendationSourceUnavailable``; 4xx as
    ``GraphRequestError``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        is_prod: bool | None = None,
        timeout: float | None = None,
        tokens: TokenCache | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.graph_base_url).rstrip("/")
        if not self.base_url:
            raise GraphConfigError("GRAPH_BASE_URL is not configured")
        self.is_prod = settings.graph_is_prod if is_prod is None else is_prod
        self.timeout = timeout or settings.graph_timeout_seconds
        self.tokens = tokens or get_token_cache()
        self.transport = transport

    def _post(self, op: str, path: str, body: Dict[str, Any]) -> Any:
        token = self.tokens.get_access_token()
        payload = dict(body)
        payload["is_prod"] = bool(self.is_prod)
        headers = {"Authorization": f"Bearer {token}"}
        cid = get_correlation_id()
        if cid:
            headers["X-Correlation-ID"] = cid
        started = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.post(f"{self.base_url}{path}", json=payload, headers=headers)
        except httpx.TimeoutException as e:
            GRAPH_REQUESTS_TOTAL.labels(op=op, outcome="timeout").inc()
            logger.warning("graph_timeout", op=op, timeout=self.timeout)
            raise RecommendationSourceUnavailable(f"Graph gateway timed out during {op}") from e
        except httpx.HTTPError as e:
            GRAPH_REQUESTS_TOTAL.labels(op=op, outcome="network_error").inc()
            logger.warning("graph_unreachable", op=op, error=str(e))
            raise RecommendationSourceUnavailable(f"Graph gateway unreachable during {op}") from e
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if r.status_code == 401:
            self.tokens.invalidate()
        if r.status_code >= 500 or r.status_code == 401:
            GRAPH_REQUESTS_TOTAL.labels(op=op, outcome="unavailable").inc()
            logger.warning("graph_unavailable", op=op, status=r.status_code, elapsed_ms=elapsed_ms)
            raise RecommendationSourceUnavailable(
                f"Graph gateway returned {r.status_code} during {op}", status=r.status_code
            )
        if r.status_code >= 400:
            GRAPH_REQUESTS_TOTAL.labels(op=op, outcome="rejected").inc()
            logger.warning("graph_rejected", op=op, status=r.status_code, body=r.text[:500])
            raise GraphRequestError(
                f"Graph gateway rejected {op}", status=r.status_code, details={"body": r.text[:500]}
            )
        try:
            data = r.json() if r.content else {}
        except ValueError as e:
            GRAPH_REQUESTS_TOTAL.labels(op=op, outcome="malformed").inc()
            raise RecommendationSourceUnavailable(f"Graph gateway sent malformed JSON during {op}") from e
        GRAPH_REQUESTS_TOTAL.labels(op=op, outcome="ok").inc()
        logger.info("graph_request", op=op, status=r.status_code, elapsed_ms=elapsed_ms)
        return data

    def run(self, query: CypherQuery) -> List[Dict[str, Any]]:
        data = self._post("query", "/query", {"query": query.render()})
        rows = _extract_rows(data)
        if rows is None:
            GRAPH_REQUESTS_TOTAL.labels(op="query", outcome="malformed").inc()
            raise RecommendationSourceUnavailable(f"Graph gateway returned no row list for {query.name}")
        logger.info("graph_query", name=query.name, rows=len(rows))
        return rows

    def create_node(self, label: str, id_key: str, id_value: Any, props: Dict[str, Any]) -> Any:
        return self._post(
            "node",
            "/node",
            {
                "label": identifier(label),
                "id_key": identifier(id_key),
                "id_value": id_value,
                "props": {identifier(k): v for k, v in props.items()},
            },
        )

    def create_relationship(
        self,
        from_label: str,
        from_key: str,
        from_id: Any,
        rel_type: str,
        to_label: str,
        to_key: str,
        to_id: Any,
        props: Dict[str, Any] | None = None,
    ) -> Any:
        return self._post(
            "relationship",
            "/relationship",
            {
                "from_label": identifier(from_label),
                "from_key": identifier(from_key),
                "from_id": from_id,
                "rel_type": identifier(rel_type),
                "to_label": identifier(to_label),
                "to_key": identifier(to_key),
                "to_id": to_id,
                "props": {identifier(k): v for k, v in (props or {}).items()},
            },
        )

    def delete_relationships(self, label: str, key: str, value: Any) -> None:
        self._post("delete_relationships", "/query", {"query": delete_relationships(label, key, value).render()})

    def delete_node(self, label: str, key: str, value: Any) -> None:
        self._post("delete_node", "/query", {"query": delete_node(label, key, value).render()})


def _extract_rows(data: Any) -> List[Dict[str, Any]] | None:
    """Accepts a bare list or ``{"records"|"data"|"results": [...]}``; rows must be objects."""
    if isinstance(data, list):
        rows = data
    elif isinstance(data, dict):
        rows = None
        for key in ("records", "data", "results"):
            if isinstance(data.get(key), list):
                rows = data[key]
                break
        if rows is None:
            return None
    else:
        return None
    if not all(isinstance(r, dict) for r in rows):
        return None
    return rows


def get_gateway() -> GraphGateway:
    return GraphGateway()
