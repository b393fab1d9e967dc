# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory and HTTP schemas for the delivery service.

Endpoints:

- ``POST /send``: run the delivery pipeline for ``{api_key, file_url}``
- ``GET /health``: liveness probe, plain ``ok``
- ``GET /metrics``: Prometheus metrics, protected by ``X-API-Token`` when a
  token is configured

``/send`` authenticates with the ``api_key`` carried in the body, so it never
requires the operator token.

Example:
    Creating and running the API application::

        from filemailer.api import create_app

        app = create_app(pipeline, api_token="secret-token")
        uvicorn.run(app, host="0.0.0.0", port=8080)
"""

from typing import AsyncContextManager, Callable, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from .logger import get_logger
from .models import Outcome
from .pipeline import DeliveryPipeline

logger = get_logger("API")

app = FastAPI(title="filemailer")
pipeline: DeliveryPipeline | None = None
API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)
app.state.api_token = None

MISSING_FIELDS_MESSAGE = "api_key and file_url required"

# HTTP status per error code; anything unlisted is an internal failure
STATUS_BY_CODE = {
    "unauthorized": status.HTTP_401_UNAUTHORIZED,
    "size_limit": 413,
    "remote_error": status.HTTP_502_BAD_GATEWAY,
    "delivery_error": status.HTTP_502_BAD_GATEWAY,
}


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the operator token carried in the ``X-API-Token`` header.

    When no token is configured the dependency is bypassed.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")


auth_dependency = Depends(require_token)


class SendPayload(BaseModel):
    """Body of ``POST /send``."""
    api_key: str
    file_url: str


class SendResponse(BaseModel):
    """Result of a delivery attempt."""
    ok: bool
    stage: str
    message: str
    error: Optional[str] = None
    size: Optional[int] = None


def status_for(outcome: Outcome) -> int:
    """Map a pipeline outcome to the HTTP status of the reply."""
    if outcome.ok:
        return status.HTTP_200_OK
    return STATUS_BY_CODE.get(outcome.error, status.HTTP_500_INTERNAL_SERVER_ERROR)


def bad_request(message: str = MISSING_FIELDS_MESSAGE) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"ok": False, "stage": "invalid_request", "error": "bad_request", "message": message},
    )


def create_app(
    svc: DeliveryPipeline,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    svc:
        :class:`filemailer.pipeline.DeliveryPipeline` serving ``/send``.
    api_token:
        Optional secret protecting the operator endpoints (``/metrics``).
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn.
    """
    global pipeline
    pipeline = svc

    if lifespan is not None:
        api = FastAPI(title="filemailer", lifespan=lifespan)
    else:
        api = app

    api.state.api_token = api_token

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Reject malformed bodies; the body itself is never logged since it holds the api_key."""
        fields = sorted({str(err.get("loc", ["?"])[-1]) for err in exc.errors()})
        logger.warning("Validation error on %s %s: %s", request.method, request.url.path, ", ".join(fields))
        return bad_request()

    @api.get("/health", response_class=PlainTextResponse)
    async def health():
        """Health check endpoint for container monitoring (no authentication required)."""
        return "ok"

    @api.post("/send", response_model=SendResponse, response_model_exclude_none=True)
    async def send(payload: SendPayload):
        """Fetch ``file_url`` and mail it to the owner of ``api_key``."""
        if not pipeline:
            raise HTTPException(500, "Service not initialized")
        api_key = payload.api_key.strip()
        file_url = payload.file_url.strip()
        if not api_key or not file_url:
            return bad_request()

        outcome = await pipeline.deliver(api_key, file_url)
        code = status_for(outcome)
        body = SendResponse(
            ok=outcome.ok,
            stage=outcome.stage,
            message=outcome.message,
            error=outcome.error,
            size=outcome.size,
        )
        if code == status.HTTP_200_OK:
            return body
        return JSONResponse(status_code=code, content=body.model_dump(exclude_none=True))

    @api.get("/metrics", dependencies=[auth_dependency])
    async def metrics():
        """Expose Prometheus metrics collected by the pipeline."""
        if not pipeline:
            raise HTTPException(500, "Service not initialized")
        return Response(content=pipeline.metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    return api
