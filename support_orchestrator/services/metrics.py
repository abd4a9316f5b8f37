"""CloudWatch custom metrics with background batching.

Two families of metrics are published:

* ``ExternalAPI/*`` — count, latency and errors for every call to an
  external dependency (``anthropic``, ``letta``).
* ``Pipeline/*`` — one count per ticket-pipeline stage outcome
  (``completed``, ``degraded``, ``error``), so degraded dependencies show
  up on a dashboard even though the request itself succeeds.

When ``METRICS_ENABLED`` is not ``"true"`` data points are buffered and
dropped on flush; nothing is sent to CloudWatch.

Usage
-----
>>> from support_orchestrator.services.metrics import metrics
>>> metrics.record_success("letta", "archival_search", latency_ms=84.2)
>>> metrics.record_stage("search_knowledge", "degraded")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "SupportOrchestrator"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # PutMetricData limit per call


def _datum(
    name: str,
    value: float,
    unit: str,
    dimensions: dict[str, str],
) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
        "Timestamp": datetime.now(UTC),
        "Value": value,
        "Unit": unit,
    }


class MetricsClient:
    """Thread-safe buffer of metric data points with periodic flushing."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── External calls ────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful call to *service*."""
        self._extend(
            _datum(
                "ExternalAPI/RequestCount", 1, "Count",
                {"Service": service, "Status": "success"},
            ),
            _datum(
                "ExternalAPI/Latency", latency_ms, "Milliseconds",
                {"Service": service, "Operation": operation},
            ),
        )
        logger.debug("Metric: %s %s ok %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed call; latency is only published when measured."""
        points = [
            _datum(
                "ExternalAPI/RequestCount", 1, "Count",
                {"Service": service, "Status": "failure"},
            ),
            _datum(
                "ExternalAPI/ErrorCount", 1, "Count",
                {"Service": service, "ErrorType": error_type},
            ),
        ]
        if latency_ms > 0:
            points.append(
                _datum(
                    "ExternalAPI/Latency", latency_ms, "Milliseconds",
                    {"Service": service, "Operation": operation},
                )
            )
        self._extend(*points)
        logger.debug(
            "Metric: %s %s failed (%s) %.1fms", service, operation, error_type, latency_ms,
        )

    # ── Pipeline stages ───────────────────────────────────────────────

    def record_stage(self, stage: str, outcome: str) -> None:
        """Count one pipeline stage outcome (completed / degraded / error)."""
        self._extend(
            _datum("Pipeline/StageCount", 1, "Count", {"Stage": stage, "Outcome": outcome}),
        )

    # ── Flushing ──────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered data points to CloudWatch.  Returns count sent."""
        with self._lock:
            batch, self._buffer = self._buffer, []

        if not batch:
            return 0
        if not self._enabled:
            logger.debug("Metrics disabled; dropped %d data points", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for start in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[start : start + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    def _extend(self, *points: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.extend(points)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
