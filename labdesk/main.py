"""Main FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from labdesk import __version__
from labdesk.api.endpoints import router
from labdesk.services.back_office import close_back_office
from labdesk.utils.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"labdesk {__version__} starting")
    yield
    await close_back_office()


# Create FastAPI application
app = FastAPI(
    title="labdesk",
    description=(
        "Back office service for a DNA testing lab: enriched appointment lists, "
        "status workflows and order synchronization."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Appointments",
            "description": "List, inspect, transition and delete appointments.",
        },
        {
            "name": "Outbox",
            "description": "Post-transition effects that failed and wait for a retry.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("labdesk.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
