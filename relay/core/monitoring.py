# Notification relay monitoring
# Prometheus metrics and health endpoints

import logging
import time
from datetime import datetime, timezone
from fastapi import FastAPI, Request, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

logger = logging.getLogger(__name__)

# HTTP metrics
request_count = Counter('relay_http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
request_duration = Histogram('relay_http_request_duration_seconds', 'HTTP request duration', ['method', 'endpoint'])

# Pipeline metrics
messages_published = Counter(
    'relay_messages_published_total',
    'Dispatch messages handed to the queue',
    ['outcome'],
)
deliveries = Counter(
    'relay_deliveries_total',
    'Push gateway delivery outcomes',
    ['status'],
)
messages_rejected = Counter(
    'relay_messages_rejected_total',
    'Queue messages rejected without requeue',
)
bookkeeping_failures = Counter(
    'relay_bookkeeping_failures_total',
    'Post-delivery bookkeeping steps that failed',
    ['step'],
)
queue_reconnects = Counter(
    'relay_queue_reconnects_total',
    'Queue connections re-established after an error',
)


def setup_monitoring_middleware(app: FastAPI):
    """Add monitoring middleware to track metrics"""

    @app.middleware("http")
    async def monitor_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        # Label by route template so path ids don't explode cardinality
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        request_count.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()
        request_duration.labels(
            method=request.method,
            endpoint=endpoint
        ).observe(process_time)

        return response


def setup_health_endpoints(app: FastAPI):
    """Setup health check endpoints"""

    @app.get("/health", include_in_schema=False)
    async def health_check():
        """Basic health check endpoint"""
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint"""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
