"""
Base service class for Book Access Layer services.

Subclasses register their routes after calling ``super().__init__`` and
report collaborator health (``"ok"`` or ``"degraded"``) from
``_check_dependencies``.
"""

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Dict, Optional
import math
import time
import os

from shared.config import ServiceConfig, get_config
from shared.logging import configure_logging, get_logger, set_request_id, clear_context
from shared.metrics import get_metrics_collector
from shared.errors import AccessLayerException, CircuitOpenError, RateLimitedError
from shared.tracing import configure_tracing

from prometheus_client import CONTENT_TYPE_LATEST


SERVICE_VERSION = "1.0.0"
RATE_LIMIT_RETRY_AFTER_SECONDS = 60


class BaseService:
    """FastAPI application shell shared by access layer services."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)
        if self.config.enable_tracing:
            configure_tracing(service_name, self.config.otel_exporter, self.config.enable_console_tracing)

        self.app = FastAPI(
            title=f"{service_name.title()} Service",
            description=f"Book Access Layer - {service_name.title()} Service",
            version=SERVICE_VERSION,
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
        )
        self._setup_middleware()
        self._setup_routes()

    def _setup_middleware(self):
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def correlate_and_time(request: Request, call_next):
            request_id = set_request_id(request.headers.get("x-request-id"))
            start_time = time.time()
            status_code = 500
            try:
                response = await call_next(request)
                status_code = response.status_code
                response.headers["X-Request-ID"] = request_id
                return response
            finally:
                duration = time.time() - start_time
                self.metrics.record_http_request(request.method, request.url.path, status_code, duration)
                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    status_code=status_code,
                    duration_ms=round(duration * 1000, 2),
                )
                clear_context()

    def _setup_routes(self):

        @self.app.get("/health")
        async def health_check():
            """Liveness plus the state of each protected collaborator."""
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(e)},
                )

            status = "ok" if all(value == "ok" for value in dependencies.values()) else "degraded"
            self.metrics.record_health_check(status)
            return {
                "service": self.service_name,
                "status": status,
                "uptime_seconds": time.time() - self._start_time,
                "dependencies": dependencies,
                "version": SERVICE_VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown"),
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            return Response(content=self.metrics.export(), media_type=CONTENT_TYPE_LATEST)

        @self.app.exception_handler(AccessLayerException)
        async def access_layer_exception_handler(request: Request, exc: AccessLayerException):
            log = self.logger.warning if exc.http_status < 500 else self.logger.error
            log(
                "Request failed",
                path=request.url.path,
                code=exc.code,
                kind=exc.kind.value,
                attempts=exc.attempts,
                error=exc.message,
            )
            headers = {}
            if isinstance(exc, CircuitOpenError):
                headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
            elif isinstance(exc, RateLimitedError):
                headers["Retry-After"] = str(RATE_LIMIT_RETRY_AFTER_SECONDS)
            return JSONResponse(
                status_code=exc.http_status,
                content=exc.to_response().model_dump(),
                headers=headers,
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report collaborator health. Override in subclasses."""
        return {}

    def run(self):
        """Run the service under uvicorn."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
