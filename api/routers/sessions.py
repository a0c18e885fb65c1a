"""
Interactive simulation sessions.

A session wraps one SimulationController. Clients drive the clock with
``step`` (one or more synchronous ticks) and observe it with the snapshot
endpoint.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Any, Callable, Dict
import logging

from api.dependencies import SessionRegistry, get_container, get_sessions, settings_with_overrides
from api.models import ChaosEventModel, FixModel, SessionCreateRequest, StepRequest, TrafficRequest
from archsim.application.services.simulation_controller import SimulationController
from archsim.config.container import Container
from archsim.core.serialization import topology_from_dict

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)


def _snapshot(controller: SimulationController) -> Dict[str, Any]:
    return {"success": True, "snapshot": controller.snapshot.to_dict()}


def _call(action: str, fn: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
    """Run a session action, mapping API misuse to 4xx responses."""
    try:
        return fn()
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e).strip("'\""))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Session {action} failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Session {action} failed: {str(e)}")


@router.post("", response_model=Dict[str, Any])
async def create_session(request: SessionCreateRequest,
                         sessions: SessionRegistry = Depends(get_sessions),
                         container: Container = Depends(get_container)):
    """Create a session from a blueprint; the run starts IDLE."""
    def create():
        topology = topology_from_dict(request.blueprint)
        targets = request.targets.to_targets() if request.targets else None
        settings = settings_with_overrides(container.settings, request.settings)
        session_id = sessions.create(topology, targets, settings)
        return {"success": True, "session_id": session_id, **_snapshot(sessions.get(session_id))}
    return _call("create", create)


@router.get("", response_model=Dict[str, Any])
async def list_sessions(sessions: SessionRegistry = Depends(get_sessions)):
    return {"success": True, "sessions": sessions.ids()}


@router.get("/{session_id}", response_model=Dict[str, Any])
async def get_snapshot(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    """Current published context of the session."""
    return _call("snapshot", lambda: _snapshot(sessions.get(session_id)))


@router.delete("/{session_id}", response_model=Dict[str, Any])
async def delete_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    def delete():
        sessions.delete(session_id)
        return {"success": True, "session_id": session_id}
    return _call("delete", delete)


# ============================================================================
# Run control
# ============================================================================

@router.post("/{session_id}/start", response_model=Dict[str, Any])
async def start(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    """Validate the design and start the run when it passes."""
    def action():
        controller = sessions.get(session_id)
        validation = controller.start()
        return {**_snapshot(controller), "success": validation.is_valid,
                "validation": validation.to_dict()}
    return _call("start", action)


@router.post("/{session_id}/pause", response_model=Dict[str, Any])
async def pause(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    def action():
        controller = sessions.get(session_id)
        controller.pause()
        return _snapshot(controller)
    return _call("pause", action)


@router.post("/{session_id}/resume", response_model=Dict[str, Any])
async def resume(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    def action():
        controller = sessions.get(session_id)
        controller.resume()
        return _snapshot(controller)
    return _call("resume", action)


@router.post("/{session_id}/stop", response_model=Dict[str, Any])
async def stop(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    """Stop the run; the snapshot then carries the score."""
    def action():
        controller = sessions.get(session_id)
        controller.stop()
        return _snapshot(controller)
    return _call("stop", action)


@router.post("/{session_id}/reset", response_model=Dict[str, Any])
async def reset(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    def action():
        controller = sessions.get(session_id)
        controller.reset()
        return _snapshot(controller)
    return _call("reset", action)


@router.post("/{session_id}/step", response_model=Dict[str, Any])
async def step(session_id: str, request: StepRequest = StepRequest(),
               sessions: SessionRegistry = Depends(get_sessions)):
    """Advance a running session by ``ticks`` ticks (stops early when it completes)."""
    def action():
        controller = sessions.get(session_id)
        for _ in range(request.ticks):
            before = controller.snapshot.tick
            if controller.tick().tick == before:
                break
        return _snapshot(controller)
    return _call("step", action)


# ============================================================================
# Operator inputs
# ============================================================================

@router.post("/{session_id}/traffic", response_model=Dict[str, Any])
async def set_traffic(session_id: str, request: TrafficRequest,
                      sessions: SessionRegistry = Depends(get_sessions)):
    def action():
        controller = sessions.get(session_id)
        controller.set_traffic_level(request.level)
        return _snapshot(controller)
    return _call("traffic", action)


@router.post("/{session_id}/chaos", response_model=Dict[str, Any])
async def add_chaos(session_id: str, request: ChaosEventModel,
                    sessions: SessionRegistry = Depends(get_sessions)):
    """Inject a chaos event; without ``start_time`` it starts at the current clock."""
    def action():
        controller = sessions.get(session_id)
        event = controller.add_chaos_event(request.to_event_dict())
        return {"success": True, "event": event.to_dict()}
    return _call("chaos", action)


@router.delete("/{session_id}/chaos/{event_id}", response_model=Dict[str, Any])
async def remove_chaos(session_id: str, event_id: str,
                       sessions: SessionRegistry = Depends(get_sessions)):
    def action():
        controller = sessions.get(session_id)
        event = controller.remove_chaos_event(event_id)
        return {"success": True, "event": event.to_dict()}
    return _call("chaos", action)


@router.post("/{session_id}/fix", response_model=Dict[str, Any])
async def apply_fix(session_id: str, request: FixModel,
                    sessions: SessionRegistry = Depends(get_sessions)):
    """Apply a one-click configuration fix to a component."""
    def action():
        controller = sessions.get(session_id)
        config = controller.apply_fix(request.fix_type, request.component_id)
        return {**_snapshot(controller), "component_id": request.component_id,
                "config": config.to_dict()}
    return _call("fix", action)
