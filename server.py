"""
server.py — aiohttp HTTP front end for the identification pipeline.

Endpoints:
  POST /identify         (alias /identifyProductFromImage)   single product
  POST /identify/multi   (alias /identifyProductsFromImage)  every product in a shelf photo
  GET  /health           plain-text liveness check
  GET  /status           JSON snapshot of providers, enrichment and cache

Request body (JSON):
  { "imageBase64": "...", "imageUrl": "...", "framesBase64": ["...", ...],
    "barcode": "8901030...", "contextPrompt": "..." }

Every response carries Access-Control-Allow-Origin: *; OPTIONS preflights
get an empty 204.
"""
from __future__ import annotations

import asyncio
import json
import logging

from aiohttp import web

import config
from pipeline import PipelineController

logger = logging.getLogger(__name__)

CONTROLLER = web.AppKey("controller", PipelineController)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin":  "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


@web.middleware
async def cors_middleware(request: web.Request, handler) -> web.StreamResponse:
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=_CORS_HEADERS)
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        exc.headers.update(_CORS_HEADERS)
        raise
    response.headers.update(_CORS_HEADERS)
    return response


# ── Request handlers ───────────────────────────────────────────────────────────

async def _read_json(request: web.Request):
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


async def _run(request: web.Request, multi: bool) -> web.Response:
    body = await _read_json(request)
    if body is None:
        return web.json_response(
            {"ok": False, "success": False, "message": "Request body must be valid JSON."},
            status=400,
        )

    controller = request.app[CONTROLLER]
    auth_header = request.headers.get("Authorization")
    handle = controller.handle_identify_many if multi else controller.handle_identify
    try:
        status, payload = await asyncio.wait_for(
            handle(body, auth_header), timeout=config.REQUEST_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.error("%s exceeded %.0fs budget", request.path, config.REQUEST_TIMEOUT)
        status, payload = 500, {"ok": False, "success": False, "message": "Request timed out"}
    return web.json_response(payload, status=status)


async def handle_identify(request: web.Request) -> web.Response:
    return await _run(request, multi=False)


async def handle_identify_many(request: web.Request) -> web.Response:
    return await _run(request, multi=True)


async def handle_health(request: web.Request) -> web.Response:
    return web.Response(text="OK", content_type="text/plain")


async def handle_status(request: web.Request) -> web.Response:
    return web.json_response(await request.app[CONTROLLER].status())


# ── App factory ────────────────────────────────────────────────────────────────

def build_web_app(controller: PipelineController) -> web.Application:
    app = web.Application(
        middlewares=[cors_middleware],
        client_max_size=config.MAX_BODY_MB * 1024 * 1024,
    )
    app[CONTROLLER] = controller
    app.router.add_post("/identify",                  handle_identify)
    app.router.add_post("/identifyProductFromImage",  handle_identify)
    app.router.add_post("/identify/multi",            handle_identify_many)
    app.router.add_post("/identifyProductsFromImage", handle_identify_many)
    app.router.add_get("/health",                     handle_health)
    app.router.add_get("/status",                     handle_status)
    return app


async def start_server(controller: PipelineController) -> web.AppRunner:
    """Start the web server. Returns runner so caller can shut it down cleanly."""
    app    = build_web_app(controller)
    runner = web.AppRunner(app, access_log=logger)
    await runner.setup()
    site = web.TCPSite(runner, config.HOST, config.PORT)
    await site.start()
    logger.info("Product vision service listening on %s:%d", config.HOST, config.PORT)
    return runner
