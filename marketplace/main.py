import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from marketplace.api.routes import admin, agents, partners, payouts
from marketplace.config import settings
from marketplace.core.metrics import MetricsMiddleware, get_metrics
from marketplace.db.database import init_db

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()
    yield


app = FastAPI(
    title="Marketplace Referrals",
    description="Referral attribution, commission accrual and payouts for rental agents",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.metrics_enabled:
    app.add_middleware(MetricsMiddleware)

# REST API routes
app.include_router(agents.router, prefix="/api/agents", tags=["agents"])
app.include_router(partners.router, prefix="/api/partners", tags=["partners"])
app.include_router(payouts.router, prefix="/api/payouts", tags=["payouts"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get("/metrics")
async def metrics() -> Response:
    body, content_type = await get_metrics()
    return Response(content=body, media_type=content_type)


@app.get("/")
async def root() -> dict[str, Any]:
    return {
        "name": "Marketplace Referrals",
        "version": "0.1.0",
        "docs": "/docs",
        "endpoints": {
            "agents": "/api/agents",
            "partners": "/api/partners",
            "payouts": "/api/payouts",
            "admin": "/api/admin",
        },
    }
