"""HTTP endpoints for scraping and runtime management using FastAPI."""
from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel
import logging
import time

from rds_exporter.publishers import MetricPublisher

logger = logging.getLogger(__name__)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI application exposing /metrics, /health and status routes."""

    def __init__(self, orchestrator, publisher: MetricPublisher):
        """
        Initialize control API.

        Args:
            orchestrator: The collection orchestrator, used for status
            publisher: Publisher whose snapshot is served on /metrics
        """
        self.orchestrator = orchestrator
        self.publisher = publisher
        self.app = FastAPI(title="RDS Metrics Exporter")

        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/metrics")
        def metrics():
            """Current registry state in the Prometheus text format."""
            return Response(content=self.publisher.snapshot(), media_type=CONTENT_TYPE_LATEST)

        @self.app.get("/health", response_class=PlainTextResponse)
        def health():
            """Liveness check."""
            return "OK"

        @self.app.get("/status")
        def status():
            """Get current collection status."""
            try:
                info = self.orchestrator.status()
                info["timestamp"] = time.time()
                return info
            except Exception as e:
                logger.error(f"Error getting status: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.post("/control/loglevel")
        def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 9043):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
