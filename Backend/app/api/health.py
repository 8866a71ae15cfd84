# app/api/health.py
"""
Health check endpoints.
"""
from datetime import datetime, timezone
from fastapi import APIRouter

router = APIRouter(tags=["Health"])


@router.get("/healthz")
async def healthz():
    """Simple health check."""
    return {"ok": True, "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/health")
async def health():
    """Service health check."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
