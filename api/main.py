"""
Registration Reconciliation API - Main Application.

FastAPI application receiving order-completion notifications and the
registration intent queue calls from the registration pages.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from services.resilience import get_breaker_registry

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create FastAPI application
app = FastAPI(
    title="Registration Reconciliation API",
    description="Reconciles paid orders with queued season registrations",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# TODO: Restrict origins to the registration site domain once it is fixed
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status, version and the state of every circuit breaker.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "registration-reconciliation-api",
        "circuit_breakers": get_breaker_registry().states(),
    }


@app.get("/", tags=["Root"])
def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": "Registration Reconciliation API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import intents, orders

app.include_router(intents.router, prefix="/api/v1", tags=["Intents"])
app.include_router(orders.router, prefix="/api/v1", tags=["Orders"])
