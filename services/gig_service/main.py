from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from database import init_db
from errors import MarketplaceError
from routes import router
from notification_routes import router as notifications_router, ws_router
import realtime
import asyncio
import logging
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Gig Service API",
    description="Gigs, bids, hiring and notifications microservice",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(notifications_router)
app.include_router(ws_router)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "errors": exc.errors},
    )


@app.on_event("startup")
async def startup_event():
    init_db()
    if realtime.REALTIME_BACKEND == "redis":
        pubsub = realtime.redis_connection().pubsub(ignore_subscribe_messages=True)
        app.state.redis_relay = asyncio.create_task(realtime.relay_redis_events(realtime.manager, pubsub))
        logger.info("Relaying realtime events from Redis")


@app.on_event("shutdown")
async def shutdown_event():
    relay = getattr(app.state, "redis_relay", None)
    if relay:
        relay.cancel()


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "gig-service"}
