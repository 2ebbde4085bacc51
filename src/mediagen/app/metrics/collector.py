"""Prometheus metrics definitions."""

import os
from pathlib import Path

from prometheus_client import Counter, Gauge, Histogram

from mediagen.core.domain import ProviderName

# =============================================================================
# Histogram Buckets
# =============================================================================

# FAST: DB queries, Redis operations (0.5ms ~ 5s)
_BUCKETS_FAST = (
    0.0005, 0.001, 0.002, 0.005, 0.01,
    0.02, 0.05, 0.1, 0.2, 0.5,
    1, 2, 5,
)

# MEDIUM: provider submits, media downloads, reaper sweeps (5ms ~ 60s)
_BUCKETS_MEDIUM = (
    0.005, 0.01, 0.02, 0.04, 0.09,
    0.18, 0.36, 0.73, 1.5, 3,
    6.2, 12.7, 26, 53,
)

# SLOW: end-to-end generation time, video models run for minutes (1s ~ 30min)
_BUCKETS_SLOW = (
    1, 2, 5, 10, 20,
    40, 80, 160, 320, 640,
    1280, 1800,
)

# multiprocess_mode gauges need the directory at import time
_multiproc_dir = os.environ.get("PROMETHEUS_MULTIPROC_DIR", "/tmp/prometheus_metrics")
Path(_multiproc_dir).mkdir(parents=True, exist_ok=True)
os.environ["PROMETHEUS_MULTIPROC_DIR"] = _multiproc_dir

# =============================================================================
# HTTP
# =============================================================================

HTTP_REQUESTS_TOTAL = Counter(
    "mediagen_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "mediagen_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "endpoint"],
    buckets=_BUCKETS_MEDIUM,
)

# =============================================================================
# PostgreSQL / Redis pools (per worker)
# =============================================================================
# multiprocess_mode="all" adds a pid label for per-worker breakdown

POSTGRESQL_CONNECTED_WORKERS = Gauge(
    "mediagen_postgresql_connected_workers",
    "Number of workers connected to PostgreSQL (1 if connected, 0 if not)",
    multiprocess_mode="all",
)

POSTGRESQL_POOL_IDLE = Gauge(
    "mediagen_postgresql_pool_idle",
    "PostgreSQL connections idle in pool",
    multiprocess_mode="all",
)

POSTGRESQL_POOL_ACTIVE = Gauge(
    "mediagen_postgresql_pool_active",
    "PostgreSQL connections in use",
    multiprocess_mode="all",
)

POSTGRESQL_POOL_OVERFLOW = Gauge(
    "mediagen_postgresql_pool_overflow",
    "PostgreSQL overflow connections (negative=headroom, positive=overflow)",
    multiprocess_mode="all",
)

REDIS_CONNECTED_WORKERS = Gauge(
    "mediagen_redis_connected_workers",
    "Number of workers connected to Redis (1 if connected, 0 if not)",
    multiprocess_mode="all",
)

REDIS_POOL_ACTIVE = Gauge(
    "mediagen_redis_pool_active",
    "Redis connections in use",
    multiprocess_mode="all",
)

# =============================================================================
# Generations
# =============================================================================

GENERATIONS_CREATED_TOTAL = Counter(
    "mediagen_generations_created_total",
    "Generations accepted by the API",
    ["action"],
)

GENERATIONS_FINISHED_TOTAL = Counter(
    "mediagen_generations_finished_total",
    "Generations that reached a terminal status",
    ["status", "provider"],
)

GENERATION_DURATION = Histogram(
    "mediagen_generation_duration_seconds",
    "Time from start to terminal status",
    ["provider"],
    buckets=_BUCKETS_SLOW,
)

GENERATION_AUTO_RETRIES_TOTAL = Counter(
    "mediagen_generation_auto_retries_total",
    "Failed generations redispatched to the next provider in the chain",
)

# =============================================================================
# Providers / dispatcher
# =============================================================================

PROVIDER_SUBMITS_TOTAL = Counter(
    "mediagen_provider_submits_total",
    "Provider submit attempts",
    ["provider", "result"],  # result: sync, async, error
)

PROVIDER_SUBMIT_DURATION = Histogram(
    "mediagen_provider_submit_duration_seconds",
    "Provider submit call duration",
    ["provider"],
    buckets=_BUCKETS_MEDIUM,
)

PROVIDER_FALLBACKS_TOTAL = Counter(
    "mediagen_provider_fallbacks_total",
    "Chain fallbacks after a provider failure",
    ["provider", "category"],
)

WEBHOOKS_RECEIVED_TOTAL = Counter(
    "mediagen_webhooks_received_total",
    "Provider webhook callbacks",
    ["provider", "result"],  # result: applied, skipped, not_found, invalid
)

QUEUE_DEPTH = Gauge(
    "mediagen_queue_depth",
    "Pending jobs in the generation queue",
    multiprocess_mode="livemax",
)

QUEUE_REQUEUES_TOTAL = Counter(
    "mediagen_queue_requeues_total",
    "Jobs pushed back because no provider had capacity",
)

# =============================================================================
# Storage
# =============================================================================

MEDIA_SAVES_TOTAL = Counter(
    "mediagen_media_saves_total",
    "Generated media copied to object storage",
    ["result"],  # result: success, failure
)

MEDIA_SAVE_DURATION = Histogram(
    "mediagen_media_save_duration_seconds",
    "Download plus upload duration per media file",
    buckets=_BUCKETS_MEDIUM,
)

# =============================================================================
# Coordinators
# =============================================================================
# Only the leader updates these

COORDINATOR_TICK_TOTAL = Counter(
    "mediagen_coordinator_tick_total",
    "Total coordinator ticks executed",
    ["coordinator"],
)

COORDINATOR_TICK_DURATION = Histogram(
    "mediagen_coordinator_tick_duration_seconds",
    "Duration of coordinator tick execution",
    ["coordinator"],
    buckets=_BUCKETS_MEDIUM,
)

COORDINATOR_IS_LEADER = Gauge(
    "mediagen_coordinator_is_leader",
    "Whether this instance is the leader (1) or not (0)",
    ["coordinator"],
    multiprocess_mode="livesum",
)

REAPER_CLEANED_TOTAL = Counter(
    "mediagen_reaper_cleaned_total",
    "Stale generations resolved by the reaper",
    ["outcome"],  # outcome: synced, cleaned
)

# =============================================================================
# Circuit Breaker
# =============================================================================

CIRCUIT_BREAKER_STATE = Gauge(
    "mediagen_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["circuit"],
    multiprocess_mode="livesum",
)

CIRCUIT_BREAKER_CALLS_TOTAL = Counter(
    "mediagen_circuit_breaker_calls_total",
    "Total circuit breaker calls",
    ["circuit", "result"],  # result: success, failure
)

CIRCUIT_BREAKER_REJECTIONS_TOTAL = Counter(
    "mediagen_circuit_breaker_rejections_total",
    "Total requests rejected due to open circuit",
    ["circuit"],
)

EXTERNAL_CALL_ERRORS_TOTAL = Counter(
    "mediagen_external_call_errors_total",
    "Total external call errors by type",
    ["error_type"],  # retryable, permanent, unknown, circuit_open
)


def _init_metrics() -> None:
    """Touch labeled metrics so they report 0 instead of nodata."""
    for circuit in ("s3", "media_download"):
        CIRCUIT_BREAKER_STATE.labels(circuit=circuit).set(0)
        CIRCUIT_BREAKER_CALLS_TOTAL.labels(circuit=circuit, result="success")
        CIRCUIT_BREAKER_CALLS_TOTAL.labels(circuit=circuit, result="failure")
        CIRCUIT_BREAKER_REJECTIONS_TOTAL.labels(circuit=circuit)

    for error_type in ("retryable", "permanent", "unknown", "circuit_open"):
        EXTERNAL_CALL_ERRORS_TOTAL.labels(error_type=error_type)

    for provider in ProviderName:
        for result in ("sync", "async", "error"):
            PROVIDER_SUBMITS_TOTAL.labels(provider=provider.value, result=result)

    for outcome in ("synced", "cleaned"):
        REAPER_CLEANED_TOTAL.labels(outcome=outcome)

    for result in ("success", "failure"):
        MEDIA_SAVES_TOTAL.labels(result=result)


_init_metrics()
