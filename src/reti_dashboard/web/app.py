"""FastAPI application factory."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.errors import (
    InsufficientBalance,
    NotFound,
    RemoteUnavailable,
    RetiError,
    SimulationFailed,
)
from .routes import router


def _status_for(error: RetiError) -> int:
    if isinstance(error, NotFound):
        return error.status_code
    if isinstance(error, (InsufficientBalance, SimulationFailed)):
        return 400
    if isinstance(error, RemoteUnavailable):
        return 502
    return 500


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Réti Staking Dashboard",
        description="Validators, pools and stakes of the Réti staking protocol",
        version="0.1.0",
    )

    @app.exception_handler(RetiError)
    async def reti_error_handler(request: Request, exc: RetiError):
        return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})

    app.include_router(router, prefix="/api")
    return app
