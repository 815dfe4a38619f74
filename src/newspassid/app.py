"""FastAPI application for the NewsPassID ingestion endpoint."""

import logging

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from newspassid import __version__
from newspassid.backend.handler import MSG_INTERNAL, IngestionHandler
from newspassid.backend.storage import build_object_store
from newspassid.config import Settings
from newspassid.config import settings as default_settings

logger = logging.getLogger(__name__)


def cors_headers(request: Request) -> dict[str, str]:
    """CORS headers echoing the caller's origin (``*`` when none was sent)."""
    origin = request.headers.get("origin") or "*"
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": "POST,OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type,Authorization",
        "Access-Control-Allow-Credentials": "true",
    }


def get_handler(request: Request) -> IngestionHandler:
    """Return the app's handler, building it on first use.

    Raises:
        ValueError: If the storage settings are incomplete.
    """
    handler: IngestionHandler | None = request.app.state.handler
    if handler is None:
        settings: Settings = request.app.state.settings
        handler = IngestionHandler.from_settings(build_object_store(settings), settings)
        request.app.state.handler = handler
    return handler


def create_app(
    settings: Settings = default_settings,
    *,
    handler: IngestionHandler | None = None,
) -> FastAPI:
    """Build the application.

    Every response, errors included, carries the CORS headers.

    Args:
        settings: Settings to read the ingest path and storage config from.
        handler: Pre-built handler (tests); built lazily from settings otherwise.
    """
    app = FastAPI(
        title="NewsPassID",
        description="First-party visitor identity and audience segment ingestion",
        version=__version__,
    )
    app.state.settings = settings
    app.state.handler = handler

    @app.get("/health")
    async def health(request: Request, response: Response) -> dict[str, str]:
        """Health check endpoint."""
        response.headers.update(cors_headers(request))
        return {"status": "ok", "version": __version__}

    @app.options(settings.ingest_path)
    async def ingest_preflight(request: Request) -> Response:
        """CORS preflight: headers only, no body."""
        return Response(status_code=200, headers=cors_headers(request))

    @app.post(settings.ingest_path)
    async def ingest(request: Request) -> JSONResponse:
        """Ingest one identity event and answer with its resolved segments."""
        try:
            handler = get_handler(request)
        except Exception:
            logger.exception("[API] ingestion handler unavailable")
            return JSONResponse(
                content={"success": False, "error": MSG_INTERNAL},
                status_code=500,
                headers=cors_headers(request),
            )

        body = await request.body()
        result = await handler.handle(body)
        return JSONResponse(
            content=result.response.to_wire(),
            status_code=result.status_code,
            headers=cors_headers(request),
        )

    return app


app = create_app()
