"""
TrueCost - FastAPI Backend
==========================
API server exposing the purchasing-power engine.

The engine is pure: this layer only validates input, picks the active rate
tables and serializes results. No city data is stored here.
"""

import os
import logging
from datetime import datetime
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Local imports
from rate_tables import RateProvider, load_rate_provider, get_state_rate_table
from models import (
    ComputationResult,
    PurchasingPowerRequest,
    BatchPurchasingPowerRequest,
    BatchPurchasingPowerResponse,
)
from cost_engine import TrueCostEngine

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION SETUP
# =============================================================================

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://localhost:5173"

# Batch requests above this size are evaluated in a thread pool
BATCH_PARALLEL_THRESHOLD = 50
BATCH_MAX_WORKERS = 8

_engine: Optional[TrueCostEngine] = None


def get_engine() -> TrueCostEngine:
    """Return the engine built from the active rate tables."""
    global _engine
    if _engine is None:
        _engine = TrueCostEngine(load_rate_provider())
    return _engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("TrueCost starting up...")
    get_engine()
    yield
    logger.info("TrueCost shutting down...")


app = FastAPI(
    title="TrueCost",
    description="Persona-adjusted cost of living and true purchasing power API",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("TRUECOST_CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# API ENDPOINTS
# =============================================================================

@app.get("/")
async def root():
    """API health check."""
    return {
        "service": "TrueCost",
        "version": "1.0.0",
        "status": "healthy"
    }


@app.get("/api/health")
async def health_check(engine: TrueCostEngine = Depends(get_engine)):
    """Detailed health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "components": {
            "tax_calculator": "ready",
            "housing_adjuster": "ready",
            "income_selector": "ready",
            "rate_tables": "custom" if os.getenv("TRUECOST_RATE_TABLES") else "built-in",
            "states_loaded": len(engine.rates.state_tax_rates)
        }
    }


# --- PURCHASING POWER ---

@app.post("/api/purchasing-power", response_model=ComputationResult)
async def calculate_purchasing_power(
    request: PurchasingPowerRequest,
    engine: TrueCostEngine = Depends(get_engine)
):
    """
    Calculate true purchasing power for one city under one persona.

    Missing data never fails the request; affected fields come back null.
    """
    result = engine.compute(request.profile, request.persona)
    logger.info(
        f"[{request.profile.name or 'unnamed'}] "
        f"{request.persona.housing_situation.value}/{request.persona.work_situation.value} "
        f"-> index {result.true_purchasing_power_index}"
    )
    return result


@app.post("/api/purchasing-power/batch", response_model=BatchPurchasingPowerResponse)
async def calculate_purchasing_power_batch(
    request: BatchPurchasingPowerRequest,
    engine: TrueCostEngine = Depends(get_engine)
):
    """Compare many cities under one persona and rank them."""
    max_workers = BATCH_MAX_WORKERS if len(request.profiles) > BATCH_PARALLEL_THRESHOLD else None
    results = engine.compute_many(request.profiles, request.persona, max_workers=max_workers)
    ranking = engine.rank(results, request.profiles)

    logger.info(f"Ranked {len(results)} cities for {request.persona.work_situation.value} persona")
    return BatchPurchasingPowerResponse(results=results, ranking=ranking)


# --- REFERENCE DATA ---

@app.get("/api/reference/rates", response_model=RateProvider)
async def get_rate_tables(engine: TrueCostEngine = Depends(get_engine)):
    """Get the active rate tables and national constants."""
    return engine.rates


@app.get("/api/reference/states")
async def get_state_rates(
    state: Optional[str] = None,
    engine: TrueCostEngine = Depends(get_engine)
):
    """Get state income tax rates, or one state's rate."""
    if state:
        resolved = engine.rates.resolve_jurisdiction(state)
        if resolved is None:
            raise HTTPException(status_code=404, detail=f"Unknown jurisdiction: {state}")
        return {
            "state": resolved,
            "rate": engine.rates.state_tax_rates[resolved],
        }

    return {
        "average_state_tax_rate": engine.rates.average_state_tax_rate,
        "states": get_state_rate_table(engine.rates)
    }


# --- ERROR HANDLERS ---

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if os.getenv("DEBUG") else "An error occurred"
        }
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
