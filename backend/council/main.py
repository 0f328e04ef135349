import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from council.api.routes import router
from council.config import get_settings
from council.database import Base, get_engine

# Import models so SQLAlchemy knows about them when creating tables
# Without this import, Base.metadata.create_all() wouldn't know about the council tables
from council.models.session import CouncilSession, Draft, Evaluation  # noqa: F401

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


# =============================================================================
# LIFESPAN: Startup and Shutdown Logic
# =============================================================================
#
# - Everything BEFORE 'yield' runs on startup
# - Everything AFTER 'yield' runs on shutdown
#
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    engine = get_engine()

    # === STARTUP ===
    # Create the sessions / drafts / evaluations tables
    # If tables already exist, this does nothing (safe to run repeatedly)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    # === SHUTDOWN ===
    # Close all database connections in the pool
    await engine.dispose()


app = FastAPI(
    title="Council",
    description="Multi-agent debate and synthesis: workers draft, a judge critiques, repeat until consensus",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
