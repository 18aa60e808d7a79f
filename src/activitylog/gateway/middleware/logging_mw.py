"""LoggingMiddleware -- 请求级日志

request_id 取自上游 X-Request-ID，缺省生成 ULID；绑定到 structlog contextvars 后，
同一请求内的事件记录与同步投递日志都带有它。探活路径不记请求日志。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

REQUEST_ID_HEADER = "X-Request-ID"
_PROBE_PATHS = frozenset({"/health", "/ready"})


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(ULID())
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        if path in _PROBE_PATHS:
            response = await call_next(request)
        else:
            log = structlog.get_logger().bind(method=request.method, path=path)
            started = time.monotonic()
            response = await call_next(request)
            duration_ms = int((time.monotonic() - started) * 1000)
            if response.status_code >= 500:
                await log.awarning(
                    "request_failed",
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                )
            else:
                await log.ainfo(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
