"""
FastAPI layer exposing the batch transform pipeline.

Endpoints:
 - GET /health
 - GET /api/presets
 - POST /api/transform
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from webp_lab import __version__
from webp_lab.config import get_log_file_from_env, get_log_level_from_env
from webp_lab.errors import RequestError
from webp_lab.logging_config import get_logger, setup_logging
from webp_lab.models import BatchItem
from webp_lab.options import PRESETS, normalize_config
from webp_lab.orchestrator import TransformOrchestrator

FILES_FIELD = "files"
OPTIONS_FIELD = "options"
NO_STORE = {"Cache-Control": "no-store"}

logger = get_logger(__name__)


def error_response(status_code: int, content: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=NO_STORE)


async def request_error_handler(request: Request, exc: RequestError) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, f"Request rejected [{exc.status_code}]: {exc.message}")
    return error_response(exc.status_code, exc.to_dict())


async def _read_items(files: list[UploadFile]) -> list[BatchItem]:
    items = []
    for upload in files:
        data = await upload.read()
        items.append(
            BatchItem(
                name=upload.filename or "image",
                data=data,
                content_type=upload.content_type,
                size=upload.size if upload.size is not None else len(data),
            )
        )
    return items


def create_app(orchestrator: TransformOrchestrator | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        orchestrator: Optional orchestrator, mainly for tests

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(title="WebP Lab Transform Service", version=__version__)
    app.add_exception_handler(RequestError, request_error_handler)
    service = orchestrator or TransformOrchestrator()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/api/presets")
    def presets():
        return [
            {
                "id": preset.id,
                "label": preset.label,
                "description": preset.description,
                "options": normalize_config(preset.options).to_dict(),
            }
            for preset in PRESETS
        ]

    @app.post("/api/transform")
    async def transform(
        files: Optional[list[UploadFile]] = File(default=None, alias=FILES_FIELD),
        options: Optional[str] = Form(default=None, alias=OPTIONS_FIELD),
    ):
        cancel_event = threading.Event()
        try:
            items = await _read_items(files or [])
            packaged = await run_in_threadpool(service.run, items, options, cancel_event)
        except asyncio.CancelledError:
            # Client went away: stop claiming new items, discard everything
            cancel_event.set()
            raise
        except RequestError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception(f"Unexpected error while processing request: {exc}")
            return error_response(500, {"error": f"Could not process the request. {exc}"})

        return Response(
            content=packaged.data,
            media_type=packaged.content_type,
            headers=packaged.headers(),
        )

    return app


setup_logging(
    level=get_log_level_from_env() or logging.INFO,
    log_file=get_log_file_from_env(),
)
app = create_app()
