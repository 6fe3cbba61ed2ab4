from __future__ import annotations

import logging
import time
import uuid

from fastapi import FastAPI, Request
from prometheus_client import Counter, Histogram

_HTTP_REQUESTS_TOTAL = Counter(
    "nodehub_http_requests_total",
    "HTTP requests processed by NodeHub services",
    labelnames=["component", "method", "route", "status"],
)
_HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "nodehub_http_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=["component", "method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

# Polled by probes and scrapers; logged at DEBUG only.
QUIET_ROUTES = frozenset({"/health", "/metrics"})


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # The HTTP middleware already logs one line per request.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def new_request_id() -> str:
    return uuid.uuid4().hex[:16]


def request_id_of(request: Request) -> str:
    value = getattr(request.state, "request_id", None)
    if isinstance(value, str) and value:
        return value
    return new_request_id()


def _route_label(request: Request) -> str:
    """Route template (`/api/nodes/{node_id}`) so metric cardinality does not grow with ids."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if isinstance(path, str) and path:
        return path
    return request.url.path or "/"


def _record(component: str, method: str, route: str, status_code: int, elapsed: float) -> None:
    _HTTP_REQUESTS_TOTAL.labels(component, method, route, str(status_code)).inc()
    _HTTP_REQUEST_DURATION_SECONDS.labels(component, method, route).observe(elapsed)


def install_http_observability(app: FastAPI, *, component: str) -> None:
    logger = logging.getLogger(f"nodehub.{component}.http")

    @app.middleware("http")
    async def _nodehub_http_observer(request: Request, call_next):  # noqa: ANN001, ANN202
        request_id = (request.headers.get("x-request-id") or "").strip() or new_request_id()
        request.state.request_id = request_id
        method = request.method.upper()
        node_id = request.query_params.get("node_id") or "-"
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            elapsed = max(0.0, time.perf_counter() - started)
            route = _route_label(request)
            _record(component, method, route, 500, elapsed)
            logger.exception(
                "request_failed method=%s route=%s node_id=%s duration_ms=%.2f request_id=%s",
                method,
                route,
                node_id,
                elapsed * 1000,
                request_id,
            )
            raise

        elapsed = max(0.0, time.perf_counter() - started)
        route = _route_label(request)
        status_code = int(response.status_code)
        _record(component, method, route, status_code, elapsed)

        response.headers.setdefault("x-request-id", request_id)
        logger.log(
            logging.DEBUG if route in QUIET_ROUTES else logging.INFO,
            "request method=%s route=%s status=%s node_id=%s duration_ms=%.2f request_id=%s",
            method,
            route,
            status_code,
            node_id,
            elapsed * 1000,
            request_id,
        )
        return response
