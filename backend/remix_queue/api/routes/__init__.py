from fastapi import APIRouter

from remix_queue.api.routes import health, remix_queue

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(remix_queue.router, prefix="/remix-queue", tags=["remix-queue"])
