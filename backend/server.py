from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import OrderLifecycleSettings
from routes import orders
from services.message_transport import LoggingTransport, MessageTransport
from services.order_event_consumer import OrderEventConsumer
from services.order_service import OrderLifecycleService

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Import job runners from shared module (used by scheduler and tests)
from job_runner import run_escalation_sweep


def build_order_service(
    settings: Optional[OrderLifecycleSettings] = None,
    transport: Optional[MessageTransport] = None,
) -> OrderLifecycleService:
    """Wire the lifecycle core. No module-level singletons: callers own the instance."""
    settings = settings or OrderLifecycleSettings.from_env()
    return OrderLifecycleService(
        settings=settings,
        transport=transport if transport is not None else LoggingTransport(),
    )


def create_app(service: Optional[OrderLifecycleService] = None) -> FastAPI:
    service = service or build_order_service()

    # Lifespan context manager for startup/shutdown
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("Starting Order Lifecycle API")
        scheduler = None
        if not os.environ.get("PYTEST_RUNNING"):
            scheduler = AsyncIOScheduler()
            # SLA escalation sweep every N minutes
            scheduler.add_job(
                run_escalation_sweep,
                IntervalTrigger(minutes=service.settings.escalation_sweep_minutes),
                args=[service],
                id="escalation_sweep",
                name="Order SLA Escalation Sweep",
                replace_existing=True
            )
            scheduler.start()
            logger.info("Background job scheduler started")

        yield

        # Shutdown
        logger.info("Shutting down Order Lifecycle API")
        if scheduler is not None:
            scheduler.shutdown(wait=False)
            logger.info("Background job scheduler stopped")

    app = FastAPI(
        title="Order Lifecycle API",
        description="Order lifecycle state machine with priority and SLA based dispatch",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.order_service = service
    app.state.event_consumer = OrderEventConsumer(service)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(orders.router)

    # Health check
    @app.get("/api/health")
    async def health_check():
        return {
            "status": "healthy",
            "orders": len(service.store),
            "environment": os.getenv("ENVIRONMENT", "development")
        }

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        request_id = str(uuid.uuid4())
        errors = exc.errors()
        logger.warning(
            "Request validation failed request_id=%s path=%s errors=%s",
            request_id,
            request.url.path,
            [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
        )
        return JSONResponse(
            status_code=422,
            content={"detail": [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in errors],
                     "request_id": request_id},
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
