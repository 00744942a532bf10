"""Scent API: inspect smellers, sniff emitters, step the scheduler."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from engine.simulation.scents import ScentConfigError

router = APIRouter(prefix="/api/scent", tags=["scent"])


class DirectSmell(BaseModel):
    detector_id: str
    emitter_id: str


class AdvanceTick(BaseModel):
    dt: float = Field(default=0.1, ge=0.0)


def _get_scent_system(request: Request):
    """Retrieve the ScentSystem from app state."""
    system = getattr(request.app.state, "scent_system", None)
    if system is None:
        raise HTTPException(503, "Scent system not available")
    return system


@router.get("/state")
async def get_scent_state(request: Request):
    """Scheduler-wide counters and timing."""
    return _get_scent_system(request).get_state()


@router.get("/definitions")
async def list_definitions(request: Request):
    """All concrete (non-abstract) scent definitions."""
    system = _get_scent_system(request)
    return [d.to_dict() for d in system.registry.concrete()]


@router.get("/detectors/{detector_id}")
async def get_detector(detector_id: str, request: Request):
    """Pending tickets and cooldowns for one smeller."""
    system = _get_scent_system(request)
    smeller = system.get_smeller(detector_id)
    if smeller is None:
        raise HTTPException(404, f"Unknown detector: {detector_id}")
    return smeller.to_dict()


@router.post("/direct")
async def direct_smell(body: DirectSmell, request: Request):
    """Deliberately sniff an emitter that is within reach."""
    system = _get_scent_system(request)
    if system.get_smeller(body.detector_id) is None:
        raise HTTPException(404, f"Unknown detector: {body.detector_id}")
    if system.get_emitter(body.emitter_id) is None:
        raise HTTPException(404, f"Unknown emitter: {body.emitter_id}")
    if not system.can_direct_detect(body.detector_id, body.emitter_id):
        raise HTTPException(400, "Emitter is out of reach")
    try:
        notification = system.request_direct_detection(body.detector_id, body.emitter_id)
    except ScentConfigError as e:
        raise HTTPException(422, str(e))
    if notification is None:
        return {"status": "nothing"}
    return {"status": "smelled", "notification": notification.to_dict()}


@router.get("/examine/{emitter_id}")
async def examine_emitter(emitter_id: str, request: Request, examiner: str = ""):
    """Examine text keys for an emitter's scents."""
    system = _get_scent_system(request)
    description = system.examine(examiner, emitter_id)
    if description is None:
        raise HTTPException(404, f"Nothing to smell on {emitter_id}")
    return {
        "template": description.template,
        "params": description.params,
        "scent_keys": description.scent_keys,
    }


@router.post("/advance")
async def advance(body: AdvanceTick, request: Request):
    """Run one scheduler tick (headless stepping)."""
    system = _get_scent_system(request)
    delivered = system.advance(body.dt)
    return {
        "now": system.now(),
        "delivered": [n.to_dict() for n in delivered],
    }
