"""
HTTP server implementation for DocService.

This module exposes the DocService REST API:

    POST /docservice/{key}                  store a new version -> {key, id}
    GET  /docservice/{key}/{id}/html        one version -> {key, id, html}
    GET  /docservice/{key}/all/html         all versions -> {key, docs}
    GET  /docservice/{key}/{id}/links       links -> {key, id, links}
    GET  /docservice/{key}/{id}/references  references -> {key, id, references}
    GET  /v1/health                         backend status

Stored versions cannot be modified or deleted, so there are no PUT, PATCH
or DELETE routes.

Invariants:
    - Handlers only parse requests and render results; all semantics live
      in DocService
    - InvalidDocument/InvalidVersionId -> 400, NotFound -> 404,
      storage errors -> 500, all with a JSON error body

How to change safely:
    - Keep response shapes stable; clients parse "id" as an opaque string
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from functools import partial
from typing import Any

from aiohttp import web

from ..config import HttpConfig
from ..errors import (
    DocServiceError,
    InvalidDocument,
    InvalidVersionId,
    NotFound,
    StorageReadError,
    StorageWriteError,
)
from ..documents.models import DocumentSubmission

logger = logging.getLogger(__name__)

ALL_VERSIONS = "all"

_STATUS_BY_ERROR: dict[type[DocServiceError], int] = {
    InvalidDocument: 400,
    InvalidVersionId: 400,
    NotFound: 404,
    StorageWriteError: 500,
    StorageReadError: 500,
}


def status_for(error: DocServiceError) -> int:
    """HTTP status for a DocService error (500 when unmapped)."""
    for error_type, status in _STATUS_BY_ERROR.items():
        if isinstance(error, error_type):
            return status
    return 500


def create_http_app(
    service: Any,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create an HTTP application for DocService.

    Args:
        service: DocService instance
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except DocServiceError as e:
            status = status_for(e)
            if status >= 500:
                logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(e.to_dict(), status=status)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    app = web.Application(
        middlewares=[error_middleware],
        client_max_size=config.client_max_size,
    )

    app.router.add_post("/docservice/{key}", partial(handle_post_doc, service=service))
    app.router.add_get("/docservice/{key}/{id}/html", partial(handle_get_html, service=service))
    app.router.add_get("/docservice/{key}/{id}/links", partial(handle_get_links, service=service))
    app.router.add_get(
        "/docservice/{key}/{id}/references", partial(handle_get_references, service=service)
    )
    app.router.add_get("/v1/health", partial(handle_health, service=service))

    return app


async def handle_post_doc(request: web.Request, service: Any) -> web.Response:
    """Handle POST /docservice/{key} - Store a new document version."""
    key = request.match_info["key"]

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        # Body is not JSON or not valid in its declared charset
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON body", "error_code": "INVALID_DOCUMENT"}),
            content_type="application/json",
        )

    submission = DocumentSubmission.from_dict(body)
    result = await service.submit_document(key, submission)
    return web.json_response(result.to_dict())


async def handle_get_html(request: web.Request, service: Any) -> web.Response:
    """Handle GET /docservice/{key}/{id}/html - One version, or all when id is 'all'."""
    key = request.match_info["key"]
    version_id = request.match_info["id"]

    if version_id == ALL_VERSIONS:
        history = await service.get_all_versions(key)
        return web.json_response(history.to_dict())

    doc = await service.get_version(key, version_id)
    return web.json_response(doc.to_dict())


async def handle_get_links(request: web.Request, service: Any) -> web.Response:
    """Handle GET /docservice/{key}/{id}/links - Links of one version."""
    links = await service.get_links(request.match_info["key"], request.match_info["id"])
    return web.json_response(links.to_dict())


async def handle_get_references(request: web.Request, service: Any) -> web.Response:
    """Handle GET /docservice/{key}/{id}/references - References of one version."""
    refs = await service.get_references(request.match_info["key"], request.match_info["id"])
    return web.json_response(refs.to_dict())


async def handle_health(request: web.Request, service: Any) -> web.Response:
    """Handle GET /v1/health - Health check."""
    result = await service.health()
    status = 200 if result.get("healthy") else 503
    return web.json_response(result, status=status)


async def start_http_site(
    app: web.Application,
    host: str = "0.0.0.0",
    port: int = 3000,
) -> web.AppRunner:
    """Start serving an application.

    Args:
        app: aiohttp application from create_http_app()
        host: Host to bind to
        port: Port to listen on

    Returns:
        The runner; call ``await runner.cleanup()`` to stop serving
    """
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"HTTP server running on http://{host}:{port}")
    return runner
