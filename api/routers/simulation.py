"""
Batch simulation endpoints: design validation and full runs.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Dict, Any
import logging

from api.dependencies import get_container, settings_with_overrides
from api.models import DesignRequest, RunRequest
from archsim.application.services.simulation_service import SimulationService
from archsim.config.container import Container
from archsim.core.component_types import PROFILES
from archsim.core.serialization import topology_from_dict

router = APIRouter(prefix="/api/v1/simulation", tags=["simulation"])
logger = logging.getLogger(__name__)


@router.post("/validate", response_model=Dict[str, Any])
async def validate_design(request: DesignRequest, container: Container = Depends(get_container)):
    """
    Run the pre-simulation gate on a design.

    Returns blocking errors (reasons), warnings and suggestions.
    """
    try:
        topology = topology_from_dict(request.blueprint)
        targets = request.targets.to_targets() if request.targets else None
        result = container.simulation_service().validate(topology, targets)
        return {
            "success": True,
            "validation": result.to_dict(),
        }
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid blueprint: {str(e)}")
    except Exception as e:
        logger.error(f"Validation failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Validation failed: {str(e)}")


@router.post("/run", response_model=Dict[str, Any])
async def run_simulation(request: RunRequest, container: Container = Depends(get_container)):
    """
    Run a design for up to ``ticks`` ticks with an optional chaos schedule
    and fixes, and return the final metrics, failure log and score.
    """
    try:
        topology = topology_from_dict(request.blueprint)
        targets = request.targets.to_targets() if request.targets else None
        settings = settings_with_overrides(container.settings, request.settings)
        service = SimulationService(settings=settings, store=container.file_store())
        logger.info(f"Running simulation: {len(topology)} components, ticks={request.ticks}")

        result = service.run(
            topology,
            targets,
            ticks=request.ticks,
            traffic_level=request.traffic_level,
            chaos_events=[c.to_event_dict() for c in request.chaos],
            fixes=[{"tick": f.tick, "fix_type": f.fix_type, "component_id": f.component_id}
                   for f in request.fixes],
        )
        return {
            "success": result.validation.is_valid,
            "simulation_type": "batch",
            "result": result.to_dict(include_timeline=request.include_timeline),
        }
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e).strip("'\""))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Simulation failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Simulation failed: {str(e)}")


@router.get("/types", response_model=Dict[str, Any])
async def component_types():
    """Component type catalog with default configuration."""
    return {
        "success": True,
        "types": {
            ctype.value: {
                "category": profile.category.value,
                "base_latency_ms": profile.base_latency_ms,
                "inert": profile.inert,
                "default_config": profile.defaults.to_dict(),
            }
            for ctype, profile in PROFILES.items()
        },
    }
