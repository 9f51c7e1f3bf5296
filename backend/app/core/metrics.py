"""
Prometheus metrics for the access and verification workflows.

HTTP metrics come from prometheus-fastapi-instrumentator. Workflow counters
are defined here and incremented by the services.

Metrics are exposed on a SEPARATE admin port (METRICS_ADMIN_PORT) protected by
HTTP Basic Auth. They are NOT exposed on the main API port.

Dev access: curl -u admin:metrics_admin http://localhost:9090/metrics
"""

import base64
import hmac

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from prometheus_fastapi_instrumentator import Instrumentator, metrics
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route
from starlette.types import ASGIApp

from app.config import settings


tokens_issued_total = Counter(
    "tokens_issued_total",
    "Tokens issued by the token ledger",
    ["purpose"],
)

tokens_redeemed_total = Counter(
    "tokens_redeemed_total",
    "Token redemption attempts by outcome",
    ["purpose", "outcome"],  # ok, not_found, expired, already_used
)

verification_emails_total = Counter(
    "verification_emails_total",
    "Verification emails by campaign and result",
    ["campaign_type", "interval", "status"],  # status: sent, failed
)

access_grants_total = Counter(
    "access_grants_total",
    "Access grants by delivery outcome",
    ["outcome"],  # delivered, not_configured, sender_unverified, transient
)

team_links_total = Counter(
    "team_links_total",
    "Identity linking results",
    ["result"],  # linked, already_linked
)

event_invites_total = Counter(
    "event_invites_total",
    "Event invitation emails by result",
    ["status"],  # sent, failed
)

rsvp_responses_total = Counter(
    "rsvp_responses_total",
    "Recorded RSVP answers",
    ["status"],  # going, pending, not_going
)

reverification_sweep_duration_seconds = Histogram(
    "reverification_sweep_duration_seconds",
    "Re-verification sweep duration in seconds",
    ["dry_run"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

rate_limit_hits_total = Counter(
    "rate_limit_hits_total",
    "Total rate limit hits (requests blocked)",
    ["endpoint"],
)


def setup_metrics(app: FastAPI) -> None:
    """
    Instrument the FastAPI app with Prometheus HTTP collectors.

    Does NOT expose a /metrics route on the main API port.
    """
    instrumentator = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/health", "/docs", "/openapi.json"],
        env_var_name="ENABLE_METRICS",
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    )

    instrumentator.add(
        metrics.latency(
            should_include_handler=True,
            should_include_method=True,
            should_include_status=True,
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )
    )
    instrumentator.add(
        metrics.requests(
            should_include_handler=True,
            should_include_method=True,
            should_include_status=True,
        )
    )

    instrumentator.instrument(app)


def create_metrics_app() -> ASGIApp:
    """
    Create a minimal ASGI app that serves /metrics behind HTTP Basic Auth.

    Runs on METRICS_ADMIN_PORT, never on the public API port.
    """

    def _unauthorized() -> Response:
        return Response(
            content="Unauthorized",
            status_code=401,
            headers={"WWW-Authenticate": 'Basic realm="metrics"'},
        )

    async def metrics_endpoint(request: Request) -> Response:
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Basic "):
            return _unauthorized()

        try:
            decoded = base64.b64decode(auth_header[6:]).decode("utf-8", errors="replace")
            username, password = decoded.split(":", 1)
        except ValueError:
            return _unauthorized()

        if not (
            hmac.compare_digest(username, settings.METRICS_USERNAME)
            and hmac.compare_digest(password, settings.METRICS_PASSWORD)
        ):
            return _unauthorized()

        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return Starlette(routes=[Route("/metrics", metrics_endpoint)])


def track_rate_limit_hit(endpoint: str) -> None:
    rate_limit_hits_total.labels(endpoint=endpoint).inc()
