"""
Volunteer Automation - FastAPI Application
Workflow automation backend for the volunteer platform
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from volunteer_automation.api.routes import auth, health
from volunteer_automation.api.v1 import events, executions, workflows
from volunteer_automation.config import settings
from volunteer_automation.core.logger import configure_logging, get_logger
from volunteer_automation.database import SessionLocal, init_db
from volunteer_automation.services.change_events import ChangeFeed
from volunteer_automation.services.workflow_scheduler import WorkflowScheduler

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Starting %s...", settings.app_name)

    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")

    scheduler = WorkflowScheduler(session_factory=SessionLocal, enabled=settings.scheduler_enabled)
    change_feed = ChangeFeed(scheduler, loop=asyncio.get_running_loop())
    app.state.workflow_scheduler = scheduler
    app.state.change_feed = change_feed

    if settings.scheduler_enabled:
        try:
            count = await scheduler.start()
            logger.info("Workflow scheduler started with %s workflows", count)
        except Exception as e:
            logger.error(f"Workflow scheduler failed to start: {str(e)}")
        change_feed.install(SessionLocal)
    else:
        logger.info("Workflow scheduler disabled")

    logger.info(f"API running on {settings.app_env} environment")
    yield

    change_feed.uninstall()
    await scheduler.stop()
    logger.info("Shutting down %s...", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="Workflow automation API for the volunteer platform",
    version="1.0.0",
    lifespan=lifespan,
)

# Respect proxy forwarded proto/host so redirects don't downgrade to http.
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root() -> dict:
    return {
        "name": settings.app_name,
        "environment": settings.app_env,
        "timestamp": datetime.utcnow().isoformat(),
    }


prefix = settings.api_v1_prefix
app.include_router(health.router, prefix=prefix, tags=["Health"])
app.include_router(auth.router, prefix=f"{prefix}/auth", tags=["Auth"])
app.include_router(workflows.router, prefix=f"{prefix}/workflows", tags=["Workflows"])
app.include_router(executions.router, prefix=f"{prefix}/executions", tags=["Executions"])
app.include_router(events.router, prefix=f"{prefix}/events", tags=["Events"])
