import logging

from fastapi import FastAPI

from dexmanager.core.dependencies import get_dex_manager, get_package_registry, get_usage_ledger

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Dex usage manager",
    version="0.1.0",
    description="Tracks which package owns each loaded dex file and maintains secondary dex files.",
)


@app.on_event("startup")
async def startup_event() -> None:
    """
    Build the code location cache from the installed package snapshot and
    load the persisted dex usage.
    """
    registry = get_package_registry()
    get_dex_manager().load(registry.get_installed_packages())


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """
    Write any usage recorded since the last background write.
    """
    try:
        get_usage_ledger().flush()
    except Exception as e:
        logger.error(f"Failed to write dex usage on shutdown: {e}", exc_info=True)


@app.get("/health")
async def health() -> dict:
    """
    Lightweight health check endpoint.
    """
    return {"status": "ok"}


from dexmanager.api.dex import router as dex_router
from dexmanager.api.maintenance import router as maintenance_router

app.include_router(dex_router, tags=["dex"])
app.include_router(maintenance_router, tags=["maintenance"])
logger.info("Loaded dex and maintenance routers")


if __name__ == "__main__":
    """
    Allow running `python dexmanager/main.py` to start the Uvicorn development server.
    """
    import uvicorn

    uvicorn.run(
        "dexmanager.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
