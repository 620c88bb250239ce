"""
Per-request timing for the WalkAid endpoints.

app.py opens a RequestTrace for every guarded request and keeps it in
thread-local storage.  Pipeline steps run through timed_stage(); the Maps
and Gemini gateways call record_call() after each outbound request, and
the call is charged to whichever step was running at the time.  When the
response is ready app.py logs a single line such as

    [trace-summary] trace=3f9c1a2b7d endpoint=search_places outcome=success
        total_ms=812 search=402ms/1 enrich=398ms/1 google_maps=2 gemini=0
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Step names used by the pipelines, in the order they run.
STAGES = ("validate", "model", "parse", "search", "enrich", "directions")

# Outbound services a request may hit.
SERVICES = ("google_maps", "gemini")


@dataclass
class OutboundCall:
    service: str
    endpoint: str
    elapsed_ms: int
    status_code: int  # 0 when no HTTP response arrived
    provider_status: str = ""
    stage: str = ""

    @property
    def failed(self) -> bool:
        return self.status_code == 0 or self.status_code >= 400


@dataclass
class StageTiming:
    name: str
    elapsed_ms: int
    calls: int = 0
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass
class RequestTrace:
    trace_id: str
    endpoint: str = ""
    started: float = field(default_factory=time.perf_counter)
    stages: List[StageTiming] = field(default_factory=list)
    calls: List[OutboundCall] = field(default_factory=list)
    active_stage: str = ""

    @contextmanager
    def stage(self, name: str):
        """Time the enclosed block as step ``name``; exceptions propagate."""
        outer = self.active_stage
        self.active_stage = name
        t0 = time.perf_counter()
        error = ""
        try:
            yield self
        except Exception as exc:
            error = f"{type(exc).__name__}: {str(exc)[:200]}"
            raise
        finally:
            self.active_stage = outer
            timing = StageTiming(
                name=name,
                elapsed_ms=int((time.perf_counter() - t0) * 1000),
                calls=sum(1 for c in self.calls if c.stage == name),
                error=error,
            )
            self.stages.append(timing)
            logger.info(
                "  [stage] trace=%s %s %s %dms calls=%d%s",
                self.trace_id, name, "OK" if timing.ok else "ERR",
                timing.elapsed_ms, timing.calls,
                f" err={error}" if error else "",
            )

    def record_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
    ):
        call = OutboundCall(
            service=service,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
            stage=self.active_stage,
        )
        self.calls.append(call)
        logger.info(
            "  [call] trace=%s %s.%s %dms http=%d%s",
            self.trace_id, service, endpoint, elapsed_ms, status_code,
            f" provider={provider_status}" if provider_status else "",
        )

    def calls_by_service(self) -> Dict[str, int]:
        counts = {service: 0 for service in SERVICES}
        for call in self.calls:
            counts[call.service] = counts.get(call.service, 0) + 1
        return counts

    @property
    def outcome(self) -> str:
        if not self.stages:
            return "empty"
        return "error" if any(not s.ok for s in self.stages) else "success"

    def summary_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "endpoint": self.endpoint,
            "outcome": self.outcome,
            "total_ms": int((time.perf_counter() - self.started) * 1000),
            "calls": self.calls_by_service(),
            "failed_calls": sum(1 for c in self.calls if c.failed),
            "stages": [
                {"stage": s.name, "ms": s.elapsed_ms, "calls": s.calls, "error": s.error or None}
                for s in self.stages
            ],
        }

    def log_summary(self):
        s = self.summary_dict()
        stages = " ".join(f"{st['stage']}={st['ms']}ms/{st['calls']}" for st in s["stages"])
        calls = " ".join(f"{svc}={n}" for svc, n in s["calls"].items())
        logger.info(
            "[trace-summary] trace=%s endpoint=%s outcome=%s total_ms=%d %s%s",
            s["trace_id"], s["endpoint"] or "-", s["outcome"], s["total_ms"],
            f"{stages} " if stages else "", calls,
        )


def timed_stage(stage_name, fn, *args, **kwargs):
    """Call ``fn(*args, **kwargs)`` inside the current trace's ``stage_name`` step."""
    trace = get_trace()
    if trace is None:
        return fn(*args, **kwargs)
    with trace.stage(stage_name):
        return fn(*args, **kwargs)


_local = threading.local()


def get_trace() -> Optional[RequestTrace]:
    return getattr(_local, "trace", None)


def set_trace(trace: Optional[RequestTrace]):
    _local.trace = trace


def clear_trace():
    _local.trace = None
