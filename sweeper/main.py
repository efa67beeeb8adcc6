from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .api import health, sweep
from .config import settings
from .logging_config import setup_logging

setup_logging(settings.log_level)

# Create FastAPI app
app = FastAPI(
    title="Dust Sweeper API",
    description="Batch swap orchestration for sweeping dust balances into one asset",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(sweep.router, tags=["Sweep"])


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "Dust Sweeper API",
        "version": "0.1.0",
        "description": "Batch swap orchestration for sweeping dust balances into one asset",
        "docs": "/docs",
        "health": "/healthz"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "sweeper.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
