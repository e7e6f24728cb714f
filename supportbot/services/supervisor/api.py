"""
Health HTTP API - FastAPI routes
Exposes the health record plus a few operator controls on the service app
"""

import gc
from typing import Any, Callable, Dict, List, Optional

import psutil
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from .health import HealthRecord


# Response models
class MemoryMetrics(BaseModel):
    rss: int
    vms: int
    gc_counts: List[int]


class HealthResponse(BaseModel):
    status: str
    lastPing: Optional[str] = None
    lastMessage: Optional[str] = None
    connectionState: str
    deploymentState: str
    reconnectAttempts: int
    totalReconnects: int
    lastRestartAt: Optional[str] = None
    errorLog: List[Dict[str, Any]] = []
    queueDepth: int = 0
    queueWait: float = 0.0
    senders: Dict[str, int] = {}
    memory: MemoryMetrics


class GCResponse(BaseModel):
    collected: int
    memory: MemoryMetrics


class SenderResponse(BaseModel):
    sender_id: str
    paused: bool
    handoff: bool


class FreezeRequest(BaseModel):
    duration: Optional[float] = None


class QRResponse(BaseModel):
    qr: str


def memory_metrics() -> MemoryMetrics:
    info = psutil.Process().memory_info()
    return MemoryMetrics(rss=info.rss, vms=info.vms, gc_counts=list(gc.get_count()))


def setup_routes(
    app: FastAPI,
    record: HealthRecord,
    pipeline,
    gateway,
    on_gc: Optional[Callable[[], int]] = None,
):
    """Register health and operator routes.

    pipeline needs queue_depth, oldest_wait, store, freeze() and resume(); gateway needs
    last_qr. Both are passed in so this module depends on neither.
    """
    collect = on_gc or gc.collect

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Current health record, queue depth and memory usage"""
        return HealthResponse(
            **record.to_dict(),
            queueDepth=pipeline.queue_depth,
            queueWait=round(pipeline.oldest_wait, 3),
            senders=pipeline.store.stats(),
            memory=memory_metrics(),
        )

    @app.post("/admin/gc", response_model=GCResponse)
    async def run_gc():
        collected = collect()
        return GCResponse(collected=collected, memory=memory_metrics())

    def _sender_state(sender_id: str) -> SenderResponse:
        return SenderResponse(
            sender_id=sender_id,
            paused=pipeline.store.is_paused(sender_id),
            handoff=pipeline.store.is_handoff(sender_id),
        )

    @app.post("/admin/senders/{sender_id}/resume", response_model=SenderResponse)
    async def resume_sender(sender_id: str):
        """End a pause (handoff or operator freeze) before it expires"""
        if not pipeline.resume(sender_id):
            raise HTTPException(status_code=404, detail=f"{sender_id} is not paused")
        return _sender_state(sender_id)

    @app.post("/admin/senders/{sender_id}/freeze", response_model=SenderResponse)
    async def freeze_sender(sender_id: str, request: Optional[FreezeRequest] = None):
        """Pause automated replies for a sender without the handoff flag"""
        duration = request.duration if request else None
        if duration is not None and duration <= 0:
            raise HTTPException(status_code=422, detail="duration must be positive")
        pipeline.freeze(sender_id, duration=duration)
        return _sender_state(sender_id)

    @app.get("/qr", response_model=QRResponse)
    async def get_qr():
        """Latest pairing QR payload from the messaging client"""
        if not gateway.last_qr:
            raise HTTPException(status_code=404, detail="No QR code available")
        return QRResponse(qr=gateway.last_qr)
