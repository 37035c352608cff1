"""StageFlow Core FastAPI application."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import get_settings
from .routers import projects, stages, tasks, suggested_tasks, users

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("stageflow-core")

logger.info("Starting StageFlow Core API")

# Create FastAPI app
app = FastAPI(
    title="StageFlow Core API",
    description="Task stage & review workflow engine",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include all routers with /api/v1 prefix
app.include_router(projects.router, prefix="/api/v1/projects")
app.include_router(stages.router, prefix="/api/v1/stages")
app.include_router(tasks.router, prefix="/api/v1/tasks")
app.include_router(suggested_tasks.router, prefix="/api/v1/suggested-tasks")
app.include_router(users.router, prefix="/api/v1/users")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "StageFlow Core API",
        "version": "1.0.0",
        "docs": "/docs",
        "description": "Task stage & review workflow engine"
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
