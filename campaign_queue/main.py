from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campaign_queue.api.endpoints import campaigns, health, jobs, queue_management
from campaign_queue.core.config import settings
from campaign_queue.core.logging_config import init_logging

def create_application() -> FastAPI:
    init_logging()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_STR}/openapi.json"
    )

    # Set up CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, prefix=f"{settings.API_V1_STR}/health", tags=["health"])
    app.include_router(campaigns.router, prefix=f"{settings.API_V1_STR}/campaigns", tags=["campaigns"])
    app.include_router(jobs.router, prefix=f"{settings.API_V1_STR}/jobs", tags=["jobs"])
    app.include_router(queue_management.router, prefix=f"{settings.API_V1_STR}/queue", tags=["queue"])

    return app

app = create_application()
