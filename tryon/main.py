"""
Main FastAPI application for the virtual try-on API.
Serves health, try-on and metrics. The dispatch service is built once at startup
and fails fast when no upstream credentials are configured.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tryon.core.config import settings
from tryon.core.logging import configure_logging
from tryon.api.routes import health, try_on
from tryon.services.dispatch import build_try_on_service
from tryon.utils.metrics import router as metrics_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    app.state.try_on_service = build_try_on_service(settings)
    try:
        yield
    finally:
        await app.state.try_on_service.shutdown()


app = FastAPI(
    title="Virtual Try-On API",
    description="Dresses a person photo in an outfit photo via Gemini image generation",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
origins = settings.cors_origins_list
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(try_on.router)
app.include_router(metrics_router)
