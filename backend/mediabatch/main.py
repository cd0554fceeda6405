"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mediabatch.api.routes import files_router, router
from mediabatch.batch import shutdown_batch_orchestrator
from mediabatch.config import CORS_ORIGINS, logger as config_logger
from mediabatch.conversion.service import get_conversion_service

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_conversion_service().scratch.prepare()
    config_logger.info("Media converter API started")
    yield
    shutdown_batch_orchestrator()
    get_conversion_service().shutdown()
    config_logger.info("Media converter API shutting down")


app = FastAPI(
    title="Media Batch Converter API",
    description="Convert batches of images to AVIF/WebP and audio to MP3, download results as a zip.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)
app.include_router(files_router)


if __name__ == "__main__":
    import uvicorn
    from mediabatch.config import HOST, PORT
    uvicorn.run("mediabatch.main:app", host=HOST, port=PORT, reload=True)
