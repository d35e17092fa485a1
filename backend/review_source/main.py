"""
Application entry point
"""
import sys
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from .api import review, rules
from .config import settings

# Logging
logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level="INFO"
)
logger.add(
    "logs/app.log",
    rotation="500 MB",
    retention="10 days",
    level="DEBUG"
)

app = FastAPI(
    title="Review Source - Code Review",
    description="Rule-based source code review with local Ollama models",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(review.router)
app.include_router(rules.router)


@app.get("/")
async def root():
    return {
        "name": "Review Source",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "model": settings.ollama_model,
        "host": settings.ollama_host,
        "languages": review.rule_store.sorted_languages(),
        "debug": settings.debug
    }


def run():
    """Start the API server"""
    import uvicorn

    logger.info("=" * 60)
    logger.info("Review Source starting...")
    logger.info(f"Server: http://{settings.app_host}:{settings.app_port}")
    logger.info(f"API docs: http://{settings.app_host}:{settings.app_port}/docs")
    logger.info(f"Model: {settings.ollama_model or '(not set)'} @ {settings.ollama_host}")
    logger.info("=" * 60)

    uvicorn.run(
        "review_source.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug
    )


if __name__ == "__main__":
    run()
