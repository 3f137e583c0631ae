import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from tortoise.contrib.fastapi import RegisterTortoise

from app import settings
from app.cache import get_redis
from app.deps import _get_hotel_info_http_client
from app.routers import (
    accounts,
    booking,
    invoices,
    payments,
    promo,
    reports,
    rooms,
    taxes,
)

logger.remove()
logger.add(sys.stderr, level=settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with RegisterTortoise(
        app,
        db_url=settings.db_url,
        modules={"models": ["app.models"]},
        generate_schemas=True,
    ):
        logger.info("Hotel bookings service started")
        yield

    await _get_hotel_info_http_client().aclose()
    await get_redis().aclose()
    logger.info("Hotel bookings service stopped")


app = FastAPI(
    title="Hotel Bookings",
    description="Booking pricing, room allocation and revenue ledger",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(booking.router)
app.include_router(payments.router)
app.include_router(accounts.router)
app.include_router(invoices.router)
app.include_router(reports.router)
app.include_router(rooms.room_types_router)
app.include_router(rooms.rooms_router)
app.include_router(promo.router)
app.include_router(taxes.router)


@app.get("/health", tags=["health"])
async def health() -> dict:
    return {"status": "ok"}
