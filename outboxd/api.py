"""HTTP trigger for the dispatcher.

Mount behind a cron or scheduler that calls ``POST /process-outbox``. Each
request runs one dispatch pass and returns its summary.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from outboxd.core.dispatcher import Dispatcher
from outboxd.core.errors import StoreUnavailableError
from outboxd.core.logging import get_logger

logger = get_logger("outboxd.api")


def create_app(dispatcher: Dispatcher) -> FastAPI:
    """Build the FastAPI app exposing ``dispatcher``."""
    app = FastAPI(title="outboxd", docs_url=None, redoc_url=None)
    app.state.dispatcher = dispatcher
    app.add_middleware(
        CORSMiddleware,
        allow_origins=dispatcher.config.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    @app.api_route("/process-outbox", methods=["GET", "POST"])
    async def process_outbox() -> JSONResponse:
        try:
            summary = await dispatcher.run_once()
        except StoreUnavailableError as e:
            logger.error(f"Outbox pass aborted: {e}", extra={"operation": e.operation})
            return JSONResponse(status_code=500, content={"error": str(e)})

        body: dict = {"success": True, **summary.to_dict()}
        if summary.total == 0:
            body["message"] = "no events to process"
        return JSONResponse(content=body)

    @app.get("/health")
    async def health() -> JSONResponse:
        try:
            counts = await dispatcher.store.count_by_status()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(status_code=503, content={"healthy": False, "error": str(e)})
        return JSONResponse(content={"healthy": True, "events": counts})

    return app
