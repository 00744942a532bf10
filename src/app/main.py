"""SCENTSYS - scent detection service.

Main FastAPI application.
"""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from app.config import Settings, settings as default_settings
from app.routers.scent import router as scent_router


def _create_scent_system(settings: Settings):
    """Create a ScentSystem from the configured definitions. Returns system or None."""
    if not settings.scent_enabled:
        return None

    from engine.simulation import InMemoryWorld, ScentSystem, load_scent_definitions
    from engine.simulation.scents import ScentConfigError

    definitions_path = Path(settings.scent_definitions_path)
    if not definitions_path.exists():
        logger.warning(f"Scent definitions not found: {definitions_path}")
        return None
    try:
        registry = load_scent_definitions(definitions_path)
    except ScentConfigError as e:
        logger.error(f"Scent definitions rejected: {e}")
        return None

    system = ScentSystem(registry, InMemoryWorld(), settings=settings)
    logger.info(f"Scent system created ({len(registry.concrete())} definitions)")
    return system


def create_app(settings: Settings | None = None, scent_system=None) -> FastAPI:
    """Build the application.  A prebuilt scent_system skips config loading."""
    settings = settings or default_settings
    app = FastAPI(title=settings.app_name, debug=settings.debug)
    if scent_system is None:
        scent_system = _create_scent_system(settings)
    app.state.scent_system = scent_system
    # Hosts that place entities reach the world through app.state
    app.state.scent_world = scent_system.world if scent_system is not None else None
    app.include_router(scent_router)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "scent_system": scent_system is not None,
        }

    return app


app = create_app()
