"""
Request/Response Logging Middleware
-----------------------------------
Logs every API request and response in structured JSON format.

Features:
- Captures method, path, actor (from JWT or X-Actor-Id), latency, and status code
- Tags each request with a trace id (echoed back as X-Trace-Id)
- Masks idempotency keys and sensitive query parameters
- Skips health check & docs routes for noise reduction
"""

import time
import json
import uuid
from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from cropclaim.utils.logger import logger
from cropclaim.utils.security import mask_idempotency_key, verify_jwt_token
from cropclaim.config import config

SKIP_PATHS = ("/health", "/docs", "/openapi.json", "/favicon.ico")
CLAIM_PATH_MARKER = "/claims/"


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, redact_pii: bool = True):
        super().__init__(app)
        self.redact_pii = redact_pii

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        path = request.url.path
        method = request.method

        if any(path.startswith(skip) for skip in SKIP_PATHS):
            return await call_next(request)

        trace_id = request.headers.get("X-Trace-Id") or str(uuid.uuid4())
        actor = self._resolve_actor(request)
        claim_id = self._claim_id_from_path(path)
        context = {"trace_id": trace_id, "actor": actor, "claim_id": claim_id}

        params = dict(request.query_params)
        if self.redact_pii:
            params = self._mask_sensitive(params)

        idempotency_key = request.headers.get("Idempotency-Key")

        try:
            logger.info(
                json.dumps({
                    "trace_id": trace_id,
                    "event": "request_start",
                    "timestamp": time.time(),
                    "method": method,
                    "path": path,
                    "actor": actor,
                    "client_ip": request.client.host if request.client else "unknown",
                    "params": params,
                    **({"idempotency_key": mask_idempotency_key(idempotency_key)} if idempotency_key else {}),
                }, default=str),
                extra=context,
            )

            response: Response = await call_next(request)
            latency_ms = round((time.time() - start_time) * 1000, 2)
            response.headers["X-Trace-Id"] = trace_id

            logger.info(
                json.dumps({
                    "trace_id": trace_id,
                    "event": "request_end",
                    "timestamp": time.time(),
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "actor": actor,
                    "latency_ms": latency_ms,
                    **({"response_headers": dict(response.headers)} if config.DEBUG else {}),
                }, default=str),
                extra=context,
            )
            return response

        except Exception as e:
            latency_ms = round((time.time() - start_time) * 1000, 2)
            logger.error(
                json.dumps({
                    "trace_id": trace_id,
                    "event": "request_error",
                    "timestamp": time.time(),
                    "method": method,
                    "path": path,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "actor": actor,
                    "latency_ms": latency_ms,
                }, default=str),
                extra=context,
            )
            raise

    # --------------------------
    # Internal helpers
    # --------------------------
    @staticmethod
    def _resolve_actor(request: Request) -> str:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            try:
                payload = verify_jwt_token(auth_header.split(" ", 1)[1])
                return payload.get("sub", "unknown")
            except HTTPException:
                # the endpoint dependency answers with 401
                return "invalid_token"
        return request.headers.get("X-Actor-Id", "anonymous")

    @staticmethod
    def _claim_id_from_path(path: str):
        if CLAIM_PATH_MARKER not in path:
            return None
        tail = path.split(CLAIM_PATH_MARKER, 1)[1]
        return tail.split("/", 1)[0] or None

    def _mask_sensitive(self, params: dict) -> dict:
        """Mask sensitive query parameters."""
        masked = {}
        for key, val in params.items():
            if any(x in key.lower() for x in ("token", "account", "ifsc", "key")):
                masked[key] = "[REDACTED]"
            else:
                masked[key] = val
        return masked
