"""
buildwatch API - FastAPI application.

Routes:
- POST /github-webhook        push webhook, builds with the pushed branch/commit
- GET|POST /trigger-build     manual build (query parameters and/or JSON body)
- GET /builds/last            most recent build as reported by the CI server
- GET /builds                 completed builds from the record store
- GET /events                 text/event-stream of lifecycle {type, payload} messages

Triggers answer as soon as the build is queued; the lifecycle continues in
the background and is observable on /events.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger

from buildwatch import __version__
from buildwatch.ci.client import JenkinsClient
from buildwatch.ci.models import TriggerSource
from buildwatch.ci.tracker import BuildTracker
from buildwatch.config import Config, get_config
from buildwatch.core.context import LifecycleContext
from buildwatch.core.exceptions import (
    AuthenticationFailure,
    BuildWatchError,
    ConfigurationError,
    JobNotBuildable,
    SubmissionFailure,
    TransientFetchError,
)
from buildwatch.events.bus import Message, Subscription

# First match wins; anything else is a 500
_ERROR_STATUS: tuple[tuple[type[BuildWatchError], int], ...] = (
    (AuthenticationFailure, status.HTTP_502_BAD_GATEWAY),
    (SubmissionFailure, status.HTTP_502_BAD_GATEWAY),
    (TransientFetchError, status.HTTP_502_BAD_GATEWAY),
    (JobNotBuildable, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_400_BAD_REQUEST),
)


def _status_for(error: BuildWatchError) -> int:
    for error_type, code in _ERROR_STATUS:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def sse_frame(message: Message) -> bytes:
    """Encode one bus message as a Server-Sent Events frame."""
    data = json.dumps(message["payload"], separators=(",", ":"), default=str)
    return f"event: {message['type']}\ndata: {data}\n\n".encode("utf-8")


async def event_stream(subscription: Subscription) -> AsyncIterator[bytes]:
    """Relay a subscription as SSE frames until it is closed."""
    try:
        async for message in subscription:
            yield sse_frame(message)
    finally:
        subscription.close()


async def _json_body(request: Request) -> dict[str, Any]:
    body = await request.body()
    if not body:
        return {}
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Body must be JSON") from e
    if not isinstance(payload, dict):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Body must be a JSON object")
    return payload


def create_app(config: Config | None = None, *, client: JenkinsClient | None = None) -> FastAPI:
    """
    Build the API application.

    The lifecycle context (database, bus, tracker) is opened when the app
    starts and closed when it stops.

    Args:
        config: Configuration (default: get_config())
        client: CI client override (default: built from config.jenkins)
    """
    cfg = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        context = await LifecycleContext.create(cfg, client=client)
        tracker = BuildTracker(context)
        app.state.context = context
        app.state.tracker = tracker
        logger.info(f"🌐 buildwatch API ready (CI server: {cfg.jenkins.url})")
        try:
            yield
        finally:
            context.bus.close_all()
            await tracker.shutdown()
            await context.close()

    app = FastAPI(title="buildwatch", version=__version__, lifespan=lifespan)

    @app.exception_handler(BuildWatchError)
    async def buildwatch_error_handler(request: Request, exc: BuildWatchError) -> JSONResponse:
        code = _status_for(exc)
        logger.warning(f"⚠️ {request.method} {request.url.path} failed ({code}): {exc.message}")
        return JSONResponse(status_code=code, content={"error": exc.message})

    @app.post("/github-webhook", status_code=status.HTTP_202_ACCEPTED)
    async def github_webhook(request: Request) -> dict[str, Any]:
        payload = await _json_body(request)
        logger.info("🚀 Push webhook received, triggering build")
        ack = await request.app.state.tracker.trigger_build(payload, source=TriggerSource.WEBHOOK)
        return ack.to_dict()

    @app.api_route("/trigger-build", methods=["GET", "POST"], status_code=status.HTTP_202_ACCEPTED)
    async def trigger_build(request: Request) -> dict[str, Any]:
        payload: dict[str, Any] = dict(request.query_params)
        if request.method == "POST":
            payload.update(await _json_body(request))
        logger.info("🚀 Manual build trigger received")
        ack = await request.app.state.tracker.trigger_build(payload)
        return ack.to_dict()

    @app.get("/builds/last")
    async def last_build(request: Request, job: str | None = None) -> dict[str, Any]:
        summary = await request.app.state.tracker.last_build_status(job)
        if summary is None:
            raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Job has no builds yet")
        return summary

    @app.get("/builds")
    async def list_builds(
        request: Request,
        limit: int = Query(default=20, ge=1, le=500),
        job: str | None = None,
    ) -> list[dict[str, Any]]:
        repository = request.app.state.context.repository
        records = await repository.list_recent(limit=limit, job_name=job)
        return [record.to_document() for record in records]

    @app.get("/events")
    async def events(request: Request) -> StreamingResponse:
        subscription = request.app.state.context.bus.subscribe()
        return StreamingResponse(
            event_stream(subscription),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    return app


def serve(config: Config | None = None, host: str | None = None, port: int | None = None) -> None:
    """Run the API under uvicorn until interrupted."""
    cfg = config or get_config()
    bind_host = host or cfg.server.host
    bind_port = port or cfg.server.port
    logger.info(f"🌐 Listening on http://{bind_host}:{bind_port}")
    uvicorn.run(create_app(cfg), host=bind_host, port=bind_port, log_level="warning")
