"""CORS and the authorization-aware access log."""

import uuid
import time
import logging

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from factory_rbac.core.config import settings

logger = logging.getLogger("factory_rbac.http")

DENIED_STATUSES = (401, 403)


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log who made it.

    `get_current_principal` stores the resolved user id on
    `request.state.principal_id`; anonymous requests log as "-". Denied
    requests (401/403) are logged at WARNING so refused access stands out.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.principal_id = None
        started = time.perf_counter()

        response: Response = await call_next(request)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Response-Time-Ms"] = str(elapsed_ms)

        principal_id = getattr(request.state, "principal_id", None)
        level = logging.WARNING if response.status_code in DENIED_STATUSES else logging.INFO
        logger.log(
            level,
            "%s %s %s %sms user=%s [%s]",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            principal_id if principal_id is not None else "-",
            request_id,
        )
        return response


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )
    app.add_middleware(AccessLogMiddleware)
