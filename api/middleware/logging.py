"""
请求/响应日志中间件
记录结账与对账接口的请求、响应与耗时；回调与上传的原始报文不落日志
"""
import json
import time
from typing import Any, Optional
from urllib.parse import parse_qs

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

# 超过该耗时（秒）的请求以 warning 记录，多为外部核验/网关调用变慢
SLOW_REQUEST_SECONDS = 5.0


class LoggingMiddleware(BaseHTTPMiddleware):
    """按调用方、接口与结果记录访问日志"""

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    # 脱敏字段
    SENSITIVE_FIELDS = {"secret", "api_key", "secret_key", "webhook_secret", "card_number", "email", "reason"}

    # 网关回调含签名与买家信息，转账凭证为图片
    NO_BODY_PREFIXES = ("/api/v1/webhooks",)
    NO_BODY_SUFFIXES = ("/slip",)

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES
        self.allow_multipart_body_log: bool = settings.LOG_REQUEST_BODY_ALLOW_MULTIPART

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        request_info = await self._request_info(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=round(time.perf_counter() - started, 3),
                error_type=type(exc).__name__,
                exc_info=True,
                **request_info,
            )
            raise

        duration = time.perf_counter() - started
        self._log_response(response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _request_info(self, request: Request) -> dict:
        info = {
            "method": request.method,
            "path": request.url.path,
            "caller_role": request.headers.get(settings.identity.role_header),
        }
        if request.query_params:
            info["query_params"] = dict(request.query_params)
        if request.path_params:
            info["path_params"] = request.path_params

        if request.method in ("POST", "PUT", "PATCH") and self._should_log_body(request):
            body = await self._sanitized_body(request)
            if body is not None:
                info["body"] = body
        return info

    def _should_log_body(self, request: Request) -> bool:
        path = request.url.path
        if path.startswith(self.NO_BODY_PREFIXES) or path.endswith(self.NO_BODY_SUFFIXES):
            return False
        # X-Log-Body: true/false 可按请求覆盖默认值
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _sanitized_body(self, request: Request) -> Optional[Any]:
        body = await request.body()
        if not body:
            return None

        text = body[: self.max_body_log_bytes].decode("utf-8", errors="ignore")
        content_type = request.headers.get("content-type", "").lower()
        if "multipart/form-data" in content_type:
            return {"multipart": True} if self.allow_multipart_body_log else None
        if "application/json" in content_type:
            try:
                return self._mask(json.loads(text))
            except ValueError:
                # 截断后的 JSON 无法解析，按文本记录
                return text
        if "application/x-www-form-urlencoded" in content_type:
            return self._mask({k: v[0] if len(v) == 1 else v for k, v in parse_qs(text).items()})
        return text

    def _mask(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: "***" if k.lower() in self.SENSITIVE_FIELDS else self._mask(v) for k, v in data.items()}
        if isinstance(data, list):
            return [self._mask(v) for v in data]
        return data

    def _log_response(self, response: Response, duration: float, request_info: dict) -> None:
        log_data = {"status_code": response.status_code, "duration": round(duration, 3), **request_info}
        if response.status_code >= 500:
            logger.error("request_server_error", **log_data)
        elif response.status_code >= 400:
            logger.warning("request_client_error", **log_data)
        elif duration >= SLOW_REQUEST_SECONDS:
            logger.warning("request_slow", **log_data)
        else:
            logger.info("request_completed", **log_data)
