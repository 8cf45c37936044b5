from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from perpsim.core.config import settings
from perpsim.api.routes_agent import router as agent_router
from perpsim.api.routes_dashboard import router as dashboard_router
from perpsim.api.routes_faucet import router as faucet_router
from perpsim.api.routes_market import router as market_router
from perpsim.api.routes_positions import router as positions_router
from perpsim.database import check_database_connection, init_db
from perpsim.services.agent_runner import agent_runner
import logging

# Setup logging configuration early
from perpsim.core.logging_config import setup_logging
setup_logging()

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)


@app.on_event("startup")
async def startup_event():
    """Create tables, then start the automation runner unless disabled"""
    init_db()
    logger.info(f"Database ready ({settings.ENVIRONMENT})")

    if settings.RUN_AGENT_SCHEDULER:
        await agent_runner.start()
    else:
        logger.info("RUN_AGENT_SCHEDULER is off; automation runner not started")


@app.on_event("shutdown")
async def shutdown_event():
    await agent_runner.stop()


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get(f"{settings.API_PREFIX}/health")
def api_health():
    db_ok, db_message = check_database_connection()
    return {
        "status": "ok" if db_ok else "degraded",
        "database": db_message,
        "agent_runner": "running" if agent_runner.running else "stopped",
    }


app.include_router(market_router, prefix=settings.API_PREFIX, tags=["market"])
app.include_router(dashboard_router, prefix=settings.API_PREFIX, tags=["dashboard"])
app.include_router(faucet_router, prefix=settings.API_PREFIX, tags=["faucet"])
app.include_router(positions_router, prefix=settings.API_PREFIX, tags=["positions"])
app.include_router(agent_router, prefix=settings.API_PREFIX, tags=["agent"])
