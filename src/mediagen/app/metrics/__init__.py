"""Prometheus metrics with multiprocess (gunicorn/uvicorn workers) support.

Metric definitions live in mediagen.app.metrics.collector.
"""

import os
import shutil
from pathlib import Path

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    generate_latest,
    multiprocess,
)
from starlette.responses import Response

MULTIPROC_ENV = "PROMETHEUS_MULTIPROC_DIR"


def setup_metrics(multiproc_dir: str) -> None:
    """Reset the multiprocess directory left over from a previous run.

    Workers only write there when MULTIPROC_ENV is already set when the
    collector module is imported (set it in the process environment).
    """
    path = Path(multiproc_dir)
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)
    os.environ[MULTIPROC_ENV] = str(path)


def get_metrics_response() -> Response:
    """Metrics from all workers in Prometheus text format.

    Single-process runs (tests, dev server) use the default registry.
    """
    if os.environ.get(MULTIPROC_ENV):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
    else:
        registry = REGISTRY
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
