"""normandy: replay HTTP request plans against a host and measure latency."""

from __future__ import annotations

from normandy.engine.pool import Pool, PoolState
from normandy.engine.protocol import HttpResponse, RequestResult, WorkerCommand
from normandy.engine.runner import DispatchDriver, run_load_test
from normandy.plan.http_client import HttpClient
from normandy.plan.loader import RequestPlan, load_plan
from normandy.plan.request import HttpMethod, RequestDescriptor

__version__ = "0.1.0"

__all__ = [
    "DispatchDriver",
    "HttpClient",
    "HttpMethod",
    "HttpResponse",
    "Pool",
    "PoolState",
    "RequestDescriptor",
    "RequestPlan",
    "RequestResult",
    "WorkerCommand",
    "load_plan",
    "run_load_test",
]
