import logging
from typing import Optional, TYPE_CHECKING
from fastapi import FastAPI, HTTPException
import uvicorn
from threading import Thread

from .progress import ProgressTracker

if TYPE_CHECKING:
    from .service import WorkerService

logger = logging.getLogger("analysis_worker")


class HealthServer:
    def __init__(self, progress: ProgressTracker, service: Optional["WorkerService"] = None, port: int = 8000):
        self.progress = progress
        self.service = service
        self.port = port
        self.app = FastAPI(title="Video Analysis Worker API")
        self.setup_routes()
        self.server_thread = None
        self.running = False

    def setup_routes(self):
        """Setup API routes"""

        @self.app.get("/healthz")
        async def health_check():
            """Health check endpoint"""
            return {"ok": True, "status": "healthy", "tracked_jobs": len(self.progress)}

        @self.app.get("/progress/{job_id}")
        async def get_progress(job_id: str):
            """Latest progress entry for a job, initializing default when unknown"""
            return self.progress.read(job_id)

        @self.app.get("/stats")
        async def get_stats():
            """Get worker statistics"""
            if self.service is None:
                return {"progress_entries": len(self.progress)}
            try:
                return self.service.get_stats()
            except Exception as e:
                logger.error(f"Error getting stats: {str(e)}")
                raise HTTPException(status_code=500, detail=f"Error fetching stats: {str(e)}")

    def start(self):
        """Start the HTTP server in a background thread"""
        if self.running:
            return

        def run_server():
            try:
                uvicorn.run(
                    self.app,
                    host="0.0.0.0",
                    port=self.port,
                    log_level="warning",
                    access_log=False
                )
            except Exception as e:
                logger.error(f"HTTP server error: {str(e)}")

        self.server_thread = Thread(target=run_server, daemon=True)
        self.server_thread.start()
        self.running = True

        logger.info(f"Dev HTTP server started on port {self.port}")

    def stop(self):
        """Stop the HTTP server"""
        self.running = False
        logger.info("Dev HTTP server stopped")


def start_health_server(service: "WorkerService") -> Optional[HealthServer]:
    """Start the dev HTTP server if enabled"""
    if service.config.ENABLE_HTTP_SERVER:
        server = HealthServer(service.progress, service, service.config.HTTP_PORT)
        server.start()
        return server
    return None
