import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from app.config import get_settings, reload_settings

reload_settings()
from app.database import get_pool, close_pool
from app.modules.leads.intake import router as leads_router
from app.modules.analytics.events import router as analytics_router
from app.modules.booking.confirm import router as booking_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_pool()
    yield
    await close_pool()


settings = get_settings()

app = FastAPI(
    title="SeniorSimple Leads",
    description="Quiz lead capture and CRM / ad-platform delivery",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(leads_router, prefix="/leads", tags=["leads"])
app.include_router(analytics_router, prefix="/analytics", tags=["analytics"])
app.include_router(booking_router, prefix="/booking", tags=["booking"])


@app.get("/health")
async def health():
    return {"status": "ok", "environment": settings.environment}
