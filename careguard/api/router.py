from fastapi import APIRouter
from careguard.modules.alerts.router import router as alerts_router

api_router = APIRouter()
api_router.include_router(alerts_router, tags=["audit"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
