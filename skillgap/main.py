import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from skillgap.api.common import ApiError
from skillgap.api.courses import router as courses_router
from skillgap.api.recommendations import router as recommendations_router
from skillgap.api.sync import router as sync_router
from skillgap.config.settings import settings
from skillgap.core.correlation import get_correlation_id, new_correlation_id, set_correlation_id
from skillgap.core.errors import (
    CourseNotFound,
    GraphConfigError,
    GraphRequestError,
    RecommendationSourceUnavailable,
)
from skillgap.core.logging import logger, setup_logging
from skillgap.db import pg

tags_metadata = [
    {"name": "Recommendations", "description": "Skill-gap driven course ranking over the User-Skill-Course graph."},
    {"name": "Graph sync", "description": "Keeps graph nodes and edges consistent with the relational catalog."},
    {"name": "Courses", "description": "Domain-scoped course search."},
    {"name": "System", "description": "Health check and Prometheus metrics."},
]

REQ_COUNTER = Counter("http_requests_total", "Total HTTP requests", ["method", "path", "status"])
LATENCY = Histogram("http_request_latency_ms", "Request latency ms", ["method", "path"])


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("startup", app_env=settings.app_env.value, graph_base_url=settings.graph_base_url)
    if str(settings.pg_dsn):
        pg.ensure_sync_columns()
    yield


app = FastAPI(
    title="Skill-gap Course Recommender",
    description="""
# Skill-gap course recommendations

Turns an employee's latest assessed skill gaps into ranked training courses.

* **Recommendations**: `/v1/recommendations/{user_id}` ranks courses through the external graph gateway.
* **Sync**: `/v1/sync/*` keeps Course/Skill nodes and edges in line with the catalog, which stays the source of truth.
    """,
    version="1.0.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)


@app.middleware("http")
async def correlation_middleware(request, call_next):
    cid = request.headers.get("X-Correlation-ID") or new_correlation_id()
    set_correlation_id(cid)
    rid = request.headers.get("X-Request-ID") or ("req-" + uuid.uuid4().hex[:8])
    request.state.request_id = rid
    resp = await call_next(request)
    resp.headers["X-Correlation-ID"] = cid
    resp.headers["X-Request-ID"] = rid
    return resp


@app.middleware("http")
async def metrics_middleware(request, call_next):
    method = request.method
    path = request.url.path
    with LATENCY.labels(method=method, path=path).time():
        resp = await call_next(request)
    REQ_COUNTER.labels(method=method, path=path, status=str(resp.status_code)).inc()
    return resp


def _code_for_status(status: int) -> str:
    if status == 400: return "invalid_parameters"
    if status == 404: return "not_found"
    if status == 405: return "method_not_allowed"
    if status == 409: return "conflict"
    if status == 422: return "validation_error"
    if status == 502: return "upstream_error"
    if status == 503: return "service_unavailable"
    return "internal_error"


def _error(request: Request, status: int, code: str, message: str, details=None, target=None) -> JSONResponse:
    ae = ApiError(
        code=code,
        message=message,
        target=target,
        details=details,
        request_id=getattr(request.state, "request_id", None),
        correlation_id=get_correlation_id(),
    )
    return JSONResponse(status_code=status, content=ae.model_dump())


@app.exception_handler(GraphConfigError)
async def graph_config_handler(request: Request, exc: GraphConfigError):
    logger.error("graph_config_error", error=exc.message)
    return _error(request, 500, exc.code, exc.message)


@app.exception_handler(RecommendationSourceUnavailable)
async def source_unavailable_handler(request: Request, exc: RecommendationSourceUnavailable):
    return _error(request, 503, exc.code, exc.message, details={"status": exc.status})


@app.exception_handler(GraphRequestError)
async def graph_request_handler(request: Request, exc: GraphRequestError):
    return _error(request, 502, _code_for_status(502), exc.message, details={"status": exc.status})


@app.exception_handler(CourseNotFound)
async def course_not_found_handler(request: Request, exc: CourseNotFound):
    return _error(request, 404, "not_found", str(exc), target="course_id")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception", error=exc.__class__.__name__)
    return _error(request, 500, "internal_error", "Internal server error", details={"error": exc.__class__.__name__})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    msg = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _error(request, exc.status_code, _code_for_status(exc.status_code), msg)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error(request, 422, "validation_error", "Validation failed", details={"errors": exc.errors()})


@app.get("/health", tags=["System"], summary="Health check", description="Reports which dependencies are configured.")
def health():
    return {
        "postgres": bool(str(settings.pg_dsn)),
        "graph_gateway": bool(settings.graph_base_url),
        "graph_credentials": bool(settings.graph_client_id and settings.graph_client_secret.get_secret_value()),
    }


@app.get("/metrics", tags=["System"], summary="Prometheus metrics")
def metrics():
    if not settings.prometheus_enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


origins = [o.strip() for o in (settings.cors_allow_origins or "").split(",") if o.strip()]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(recommendations_router)
app.include_router(sync_router)
app.include_router(courses_router)
