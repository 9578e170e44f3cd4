import asyncio
import logging
import sys
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from conversion_worker.config import load_config_from_env
from conversion_worker.main_worker import ConversionWorker, build_worker

logger = logging.getLogger(__name__)


def create_app(worker: Optional[ConversionWorker] = None) -> FastAPI:
    """HTTP trigger for the worker (called by Cloud Scheduler).

    Without an injected worker, one is built from the environment on the
    first request and reused afterwards.
    """
    app = FastAPI(title="Google Ads Conversion Worker", version="1.0.0")
    app.state.worker = worker
    app.state.worker_lock = asyncio.Lock()

    async def get_worker() -> ConversionWorker:
        async with app.state.worker_lock:
            if app.state.worker is None:
                config = load_config_from_env()
                logging.getLogger().setLevel(config.log_level)
                app.state.worker = build_worker(config)
        return app.state.worker

    @app.get("/api/health")
    def health_check():
        return {"status": "healthy", "service": "conversion_worker"}

    @app.post("/", response_class=PlainTextResponse)
    async def run_worker():
        logger.info("google-ads-worker execution started.")

        try:
            worker = await get_worker()
        except RuntimeError as e:
            logger.critical(f"Worker configuration error: {e}")
            return PlainTextResponse("Server configuration error.", status_code=500)

        try:
            report = await worker.run_once()
        except Exception as e:
            logger.error(f"google-ads-worker execution failed: {e}", exc_info=True)
            return PlainTextResponse("An error occurred during processing.", status_code=500)

        if report.pulled == 0:
            return PlainTextResponse("No messages to process.", status_code=200)

        if report.status_code != 200:
            return PlainTextResponse(
                f"{len(report.retried)} of {report.pulled} messages left for redelivery.",
                status_code=report.status_code
            )

        logger.info("google-ads-worker batch processing finished.")
        return PlainTextResponse("Batch processing complete.", status_code=200)

    return app


load_dotenv()
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)

app = create_app()
