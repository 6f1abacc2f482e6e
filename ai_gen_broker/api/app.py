"""
HTTP boundary.

A thin FastAPI layer over GenerationService. Authentication happens
upstream; the authenticated user id arrives in the X-User-Id header.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ai_gen_broker.config.loader import RateLimitConfig
from ai_gen_broker.core.errors import (
    AccessDenied,
    BrokerError,
    GenerationFailed,
    InvalidRequest,
    NotFound,
    QuotaError,
)
from ai_gen_broker.core.rate_limiter import FixedWindowRateLimiter, RateLimiter
from ai_gen_broker.core.service import GenerationService

logger = logging.getLogger(__name__)

ANONYMOUS_SCOPE = "anonymous"


class _Unauthenticated(Exception):
    pass


class _RateLimited(Exception):
    pass


_STATUS_BY_ERROR = (
    (QuotaError, 429),
    (AccessDenied, 403),
    (NotFound, 404),
    (InvalidRequest, 400),
    (GenerationFailed, 500),
)


class GenerateRequest(BaseModel):
    prompt: str
    mode: str = "generate"
    projectId: Optional[str] = None


def _envelope(success: bool, message: Optional[str] = None, data: Any = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": success}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def _status_for(exc: BrokerError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _validation_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in error.get("loc", ())), "message": error.get("msg", "")}
        for error in exc.errors()
    ]


def default_rate_limiter(config: Optional[RateLimitConfig] = None) -> FixedWindowRateLimiter:
    """Fixed-window limiter with one scope per role plus an anonymous scope."""
    config = config or RateLimitConfig()
    limits = dict(config.per_role)
    limits[ANONYMOUS_SCOPE] = config.anonymous
    return FixedWindowRateLimiter(limits, window_seconds=config.window_seconds)


def create_app(service: GenerationService, rate_limiter: Optional[RateLimiter] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        service: Generation service all routes delegate to
        rate_limiter: Request limiter (fixed window from config if None)

    Returns:
        Configured FastAPI app
    """
    limiter = rate_limiter or default_rate_limiter(service.config.rate_limits)
    app = FastAPI(title="AI Generation Broker")

    @app.exception_handler(BrokerError)
    async def handle_broker_error(request: Request, exc: BrokerError) -> JSONResponse:
        status = _status_for(exc)
        if isinstance(exc, QuotaError):
            body = _envelope(False, exc.message, error={"code": exc.code, **exc.details})
        else:
            body = _envelope(False, exc.message)
        return JSONResponse(status_code=status, content=body)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=_envelope(False, "Validation failed", errors=_validation_errors(exc)),
        )

    def current_user(request: Request, x_user_id: Optional[str] = Header(None)) -> str:
        if not x_user_id:
            client = request.client.host if request.client else "unknown"
            if not limiter.allow(ANONYMOUS_SCOPE, client):
                raise _RateLimited()
            raise _Unauthenticated()
        return x_user_id

    def rate_limited_user(user_id: str = Depends(current_user)) -> str:
        role = service.get_usage(user_id).role
        if not limiter.allow(role, user_id):
            logger.info("Rate limit hit for user %s (%s)", user_id, role)
            raise _RateLimited()
        return user_id

    @app.exception_handler(_Unauthenticated)
    async def handle_unauthenticated(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=401, content=_envelope(False, "Authentication required"))

    @app.exception_handler(_RateLimited)
    async def handle_rate_limited(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content=_envelope(False, "Too many AI requests, please try again later."),
        )

    @app.get("/api/ai/health")
    def health() -> Dict[str, Any]:
        return _envelope(True, data={"status": "ok"})

    @app.post("/api/ai/generate")
    def generate(
        payload: GenerateRequest,
        request: Request,
        user_id: str = Depends(rate_limited_user),
    ) -> JSONResponse:
        metadata = {
            "userAgent": request.headers.get("user-agent"),
            "ipAddress": request.client.host if request.client else None,
        }
        result = service.generate(
            user_id, payload.prompt, payload.mode,
            project_id=payload.projectId, metadata=metadata,
        )
        usage = service.get_usage(user_id)
        return JSONResponse(
            content=_envelope(True, data=result.to_dict()),
            headers={
                "X-Token-Limit-Daily": str(usage.limit),
                "X-Token-Used-Daily": str(usage.tokens_used),
                "X-Token-Remaining-Daily": str(usage.remaining),
            },
        )

    @app.get("/api/ai/history")
    def history(
        page: int = 1,
        limit: int = 20,
        projectId: Optional[str] = None,
        mode: Optional[str] = None,
        days: int = 30,
        user_id: str = Depends(current_user),
    ) -> Dict[str, Any]:
        listing = service.history(
            user_id, page=page, limit=limit, project_id=projectId, mode=mode, since_days=days,
        )
        return _envelope(True, data={
            "interactions": [record.to_dict() for record in listing["interactions"]],
            "pagination": listing["pagination"],
        })

    @app.get("/api/ai/interactions/{interaction_id}")
    def get_interaction(interaction_id: str, user_id: str = Depends(current_user)) -> Dict[str, Any]:
        record = service.get_interaction(interaction_id, user_id)
        return _envelope(True, data=record.to_dict())

    @app.delete("/api/ai/interactions/{interaction_id}")
    def delete_interaction(interaction_id: str, user_id: str = Depends(current_user)) -> Dict[str, Any]:
        service.delete_interaction(interaction_id, user_id)
        return _envelope(True, "Interaction deleted successfully")

    @app.get("/api/ai/stats")
    def stats(days: int = 30, user_id: str = Depends(current_user)) -> Dict[str, Any]:
        return _envelope(True, data=service.stats(user_id, since_days=days))

    @app.get("/api/ai/projects/{project_id}/history")
    def project_history(
        project_id: str,
        limit: int = 50,
        user_id: str = Depends(current_user),
    ) -> Dict[str, Any]:
        records = service.project_history(project_id, user_id, limit=limit)
        return _envelope(True, data={"interactions": [record.to_dict() for record in records]})

    @app.get("/api/ai/token-usage")
    def token_usage(user_id: str = Depends(current_user)) -> Dict[str, Any]:
        return _envelope(True, data=service.get_usage(user_id).to_dict())

    @app.get("/api/ai/can-request")
    def can_request(prompt: Optional[str] = None, user_id: str = Depends(current_user)) -> Dict[str, Any]:
        return _envelope(True, data=service.can_request(user_id, prompt))

    return app
