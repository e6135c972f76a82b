from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.adapters.api.controllers.mutations import router as mutations_router
from src.adapters.api.controllers.tracking import router as tracking_router
from src.adapters.api.controllers.vehicles import router as vehicles_router
from src.adapters.api.dependencies import build_fleet_runtime, build_identity_provider
from src.adapters.config import FleetConfig
from src.domain.exceptions import FleetError

_STATUS_BY_CODE = {
    "validation_error": 400,
    "permission_denied": 403,
    "not_found": 404,
    "conflict": 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    config = FleetConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    runtime = build_fleet_runtime(config)
    await runtime.start()

    app.state.config = config
    app.state.identity = build_identity_provider(config)
    app.state.fleet = runtime
    try:
        yield
    finally:
        await runtime.close()
        app.state.fleet = None


app = FastAPI(title="Campus Fleet Sync", lifespan=lifespan)
app.include_router(vehicles_router)
app.include_router(mutations_router)
app.include_router(tracking_router)


@app.exception_handler(FleetError)
async def fleet_error_handler(request: Request, exc: FleetError) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_BY_CODE.get(exc.code, 400),
        content={"error": exc.code, "detail": str(exc), "vehicle_id": exc.vehicle_id},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Ensure API errors are JSON so clients can display them."""

    logging.getLogger("uvicorn.error").exception(
        "Unhandled exception", extra={"path": str(request.url.path)}
    )

    config = getattr(request.app.state, "config", None)
    reveal = bool(config is not None and config.reveal_errors)

    detail = (str(exc) or exc.__class__.__name__) if reveal else "Internal Server Error"
    return JSONResponse(status_code=500, content={"error": "internal", "detail": detail})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
