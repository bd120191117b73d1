"""
FastAPI scaffolding shared by provisioning services.

Wires structured logging, request correlation, Prometheus metrics, the
``/health`` and ``/metrics`` endpoints and the mapping from
:class:`~shared.errors.ProvisioningError` to HTTP responses.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST
from typing import Any, Dict, Optional
import os
import time

from shared.config import ServiceConfig, get_config
from shared.errors import ProvisioningError, ValidationError
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import MetricsCollector, get_metrics_collector

VERSION = "1.0.0"


class BaseService:
    """FastAPI app with the common endpoints, middleware and error handlers.

    Subclasses register their own routes after calling ``__init__`` and may
    override :meth:`_check_dependencies` to enrich ``/health``.
    """

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.metrics = metrics or get_metrics_collector(service_name)
        self._started_at = time.time()

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)

        local = self.config.env == "local"
        self.app = FastAPI(
            title=f"{service_name.title()} Service",
            version=VERSION,
            docs_url="/docs" if local else None,
            redoc_url="/redoc" if local else None,
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if local else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_request_context()
        self._setup_health_endpoints()
        self._setup_error_handlers()

    def _setup_request_context(self):
        @self.app.middleware("http")
        async def correlate_request(request: Request, call_next):
            # Honour an upstream request id so log lines join across hops
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            started = time.perf_counter()
            try:
                response = await call_next(request)
                elapsed = time.perf_counter() - started
                self.metrics.record_http_request(request.method, request.url.path, response.status_code, elapsed)
                self.logger.info(
                    "request.completed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(elapsed * 1000, 2),
                )
                response.headers["X-Request-ID"] = request_id
                return response
            finally:
                clear_context()

    def _setup_health_endpoints(self):
        @self.app.get("/health")
        async def health():
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("health.failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(e)},
                )

            self.metrics.record_health_check("ok")
            return {
                "service": self.service_name,
                "status": "ok",
                "uptime_seconds": time.time() - self._started_at,
                "dependencies": dependencies,
                "version": VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown"),
            }

        @self.app.get("/metrics")
        async def metrics():
            return Response(content=self.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    def _error_response(self, error: ProvisioningError) -> JSONResponse:
        self.metrics.record_error(error.code)
        return JSONResponse(status_code=error.status_code, content=error.to_response().model_dump())

    def _setup_error_handlers(self):
        @self.app.exception_handler(ProvisioningError)
        async def provisioning_error(request: Request, exc: ProvisioningError):
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log("request.failed", code=exc.code, message=exc.message, details=exc.details)
            return self._error_response(exc)

        @self.app.exception_handler(RequestValidationError)
        async def malformed_request(request: Request, exc: RequestValidationError):
            problems = [{"loc": list(err.get("loc", [])), "msg": err.get("msg")} for err in exc.errors()]
            return self._error_response(ValidationError("Invalid request", details={"errors": problems}))

        @self.app.exception_handler(Exception)
        async def unexpected_error(request: Request, exc: Exception):
            self.logger.error("request.crashed", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}},
            )

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Dependency status reported by ``/health``."""
        return {}

    def run(self):
        import uvicorn
        uvicorn.run(self.app, host=self.config.host, port=self.config.port, log_level=self.config.log_level.lower())
