import logging
import time
from typing import Any

from prometheus_client import Counter, Histogram

logger = logging.getLogger("storage.metrics")

# operation 标签取 botocore 操作名（PutObject、GetObject…），基数固定
REQUESTS = Counter(
    "s3_requests_total",
    "Total S3 API calls issued through the standard transport",
    ["operation"],
)

ERRORS = Counter(
    "s3_errors_total",
    "S3 API calls that ended with an error response or a transport failure",
    ["operation", "error_code"],
)

LATENCY = Histogram(
    "s3_request_duration_seconds",
    "S3 API call latency in seconds, retries included",
    ["operation"],
)

_START_KEY = "tiered_storage_metrics_start"
_OPERATION_KEY = "tiered_storage_metrics_operation"


class MetricCollector:
    """Publishes per-operation S3 metrics from botocore's event system.

    Register it on a session's event emitter before any client is created;
    botocore copies the emitter into each client it builds.
    """

    def register(self, emitter: Any) -> None:
        emitter.register(
            "before-call.s3", self._before_call, unique_id="tiered-storage-metrics-before"
        )
        emitter.register(
            "after-call.s3", self._after_call, unique_id="tiered-storage-metrics-after"
        )
        emitter.register(
            "after-call-error.s3",
            self._after_call_error,
            unique_id="tiered-storage-metrics-error",
        )

    def _before_call(self, model: Any = None, context: Any = None, **kwargs: Any) -> None:
        operation = model.name if model is not None else "unknown"
        REQUESTS.labels(operation).inc()
        if isinstance(context, dict):
            context[_START_KEY] = time.perf_counter()
            context[_OPERATION_KEY] = operation

    def _after_call(
        self,
        http_response: Any = None,
        parsed: Any = None,
        model: Any = None,
        context: Any = None,
        **kwargs: Any,
    ) -> None:
        operation = model.name if model is not None else "unknown"
        self._observe_latency(operation, context)
        status_code = getattr(http_response, "status_code", None)
        if status_code is not None and status_code >= 300:
            error_code = "unknown"
            if isinstance(parsed, dict):
                error_code = parsed.get("Error", {}).get("Code") or str(status_code)
            ERRORS.labels(operation, error_code).inc()

    def _after_call_error(
        self, exception: Any = None, context: Any = None, **kwargs: Any
    ) -> None:
        operation = "unknown"
        if isinstance(context, dict):
            operation = context.get(_OPERATION_KEY) or operation
        self._observe_latency(operation, context)
        ERRORS.labels(operation, type(exception).__name__).inc()
        logger.debug("s3_call_failed operation=%s error=%r", operation, exception)

    @staticmethod
    def _observe_latency(operation: str, context: Any) -> None:
        if not isinstance(context, dict):
            return
        start = context.pop(_START_KEY, None)
        if start is not None:
            LATENCY.labels(operation).observe(time.perf_counter() - start)
