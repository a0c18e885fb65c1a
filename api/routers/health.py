"""
Health check and API information endpoints.
"""

from fastapi import APIRouter, Depends
from typing import Dict, Any
import logging
from datetime import datetime, timezone

import archsim
from api.dependencies import SessionRegistry, get_sessions
from api.models import HealthResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=Dict[str, Any])
async def root():
    """Root endpoint - API information"""
    return {
        "name": "Architecture Simulation API",
        "version": archsim.__version__,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "validate": "/api/v1/simulation/validate",
            "run": "/api/v1/simulation/run",
            "component_types": "/api/v1/simulation/types",
            "sessions": "/api/v1/sessions",
            "session_snapshot": "/api/v1/sessions/{session_id}",
            "session_control": "/api/v1/sessions/{session_id}/{start|pause|resume|stop|reset|step}",
            "session_traffic": "/api/v1/sessions/{session_id}/traffic",
            "session_chaos": "/api/v1/sessions/{session_id}/chaos",
            "session_fix": "/api/v1/sessions/{session_id}/fix",
        }
    }


@router.get("/health", response_model=HealthResponse)
async def health_check(sessions: SessionRegistry = Depends(get_sessions)):
    """
    Health check endpoint.
    Verifies API is running and reports the number of open sessions.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=archsim.__version__,
        active_sessions=len(sessions),
        message="API is running.",
    )
