import logging

from fastapi import FastAPI

from market_mirror.api.gallery import router as gallery_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="VS Code Extension Market Mirror",
    version="0.1.0",
    description="Gallery-compatible query API over a catalog mirrored from GitHub releases.",
)


@app.get("/health")
async def health() -> dict:
    """
    Lightweight health check endpoint.
    """
    return {"status": "ok"}


app.include_router(gallery_router, tags=["gallery"])


if __name__ == "__main__":
    """
    Allow running `python -m market_mirror.main` to start the Uvicorn
    development server.
    """
    import uvicorn

    uvicorn.run(
        "market_mirror.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
