from __future__ import annotations

from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .ledger import Identity
from .utils import normalize_identifier

USER_ID_HEADER = "X-User-Id"
USER_NAME_HEADER = "X-User-Name"
PUBLIC_PATHS = {"/healthz", "/docs", "/openapi.json", "/redoc"}


class IdentityMiddleware(BaseHTTPMiddleware):
    """Attach the caller identity forwarded by the auth proxy to the request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)
        identity = self._extract_identity(request)
        if identity is None:
            return JSONResponse({"detail": "Missing caller identity"}, status_code=401)
        request.state.identity = identity
        return await call_next(request)

    def _extract_identity(self, request: Request) -> Optional[Identity]:
        user_id = normalize_identifier(request.headers.get(USER_ID_HEADER))
        if user_id is None:
            return None
        display_name = normalize_identifier(request.headers.get(USER_NAME_HEADER)) or user_id
        return Identity(user_id=user_id, display_name=display_name)
