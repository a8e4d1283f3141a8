import time
from typing import Optional

from opentelemetry import trace
from opentelemetry.trace import Span

tracer = trace.get_tracer(__name__)


class TraceContext:
    """
    Context manager for tracing spans with custom attributes and latency bucketing.
    Works as a plain and as an async context manager.
    """

    def __init__(
        self,
        name: str,
        session_id: Optional[str] = None,
        transport: Optional[str] = None,
        metadata: Optional[dict] = None,
    ):
        self.name = name
        self.session_id = session_id
        self.transport = transport
        self.metadata = metadata or {}
        self._start_time = None
        self._span: Optional[Span] = None

    def __enter__(self):
        self._start_time = time.time()
        self._span = tracer.start_span(name=self.name)

        # Attach custom span attributes
        if self.session_id:
            self._span.set_attribute("custom.session_id", self.session_id)
        if self.transport:
            self._span.set_attribute("custom.transport", self.transport)
        for k, v in self.metadata.items():
            self._span.set_attribute(f"custom.{k}", v)

        self._span.__enter__()
        return self._span

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = (time.time() - self._start_time) * 1000  # in ms
        if self._span:
            self._span.set_attribute("custom.latency_ms", duration)
            self._span.set_attribute("custom.latency_bucket", self._bucket_latency(duration))
            if exc_val is not None:
                self._span.record_exception(exc_val)
            self._span.__exit__(exc_type, exc_val, exc_tb)

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.__exit__(exc_type, exc_val, exc_tb)

    @staticmethod
    def _bucket_latency(duration_ms: float) -> str:
        if duration_ms < 100:
            return "<100ms"
        elif duration_ms < 300:
            return "100-300ms"
        elif duration_ms < 1000:
            return "300ms-1s"
        elif duration_ms < 3000:
            return "1-3s"
        else:
            return ">3s"
