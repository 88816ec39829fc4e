"""
Base service class for the rights service.
"""

import os
import time
from typing import Dict

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from shared.config import get_config
from shared.errors import AccessControlException, ErrorResponse
from shared.logging import configure_logging, get_logger, set_request_id, clear_context
from shared.metrics import get_metrics_collector


def _route_template(request: Request) -> str:
    """Path template of the matched route, so /rights/{name} is one metric series."""
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class BaseService:
    """FastAPI scaffolding shared by services: config, logging, metrics, errors."""

    def __init__(self, service_name: str, port: int, **config_overrides):
        self.service_name = service_name
        self.port = port
        self.config = get_config(service_name, port, **config_overrides)

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        self.app = FastAPI(
            title=f"{service_name.title()} Service",
            description=f"Access Layer - {service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
        )
        self._setup_middleware()
        self._setup_error_handlers()
        self._setup_routes()

    def _setup_middleware(self):
        """CORS plus per-request id, timing and access log."""

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def request_context(request: Request, call_next):
            start_time = time.time()
            request_id = set_request_id(request.headers.get("X-Request-Id"))
            try:
                response = await call_next(request)
                duration = time.time() - start_time
                endpoint = _route_template(request)

                self.metrics.record_http_request(request.method, endpoint, response.status_code, duration)
                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    path=endpoint,
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2)
                )
            finally:
                clear_context()

            response.headers["X-Request-Id"] = request_id
            return response

    def _setup_error_handlers(self):
        """Map access control errors to their status codes."""

        @self.app.exception_handler(AccessControlException)
        async def access_control_exception_handler(request: Request, exc: AccessControlException):
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Request rejected",
                code=exc.code,
                status_code=exc.status_code,
                message=exc.message,
                check=exc.details.get("check")
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            body = ErrorResponse(code="INTERNAL_ERROR", message="Internal server error")
            return JSONResponse(status_code=500, content=body.model_dump())

    def _setup_routes(self):
        """Health and metrics endpoints."""

        @self.app.get("/health")
        async def health_check():
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(e)}
                )

            self.metrics.record_health_check("ok")
            return {
                "service": self.service_name,
                "status": "ok",
                "uptime_seconds": time.time() - self._start_time,
                "dependencies": dependencies,
                "version": "1.0.0",
                "commit": os.getenv("GIT_COMMIT", "unknown")
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            return Response(content=generate_latest(self.metrics.registry), media_type=CONTENT_TYPE_LATEST)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
