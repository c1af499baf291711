from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.core.config import settings
from livechat.core.logging import api_logger
from livechat.db.database import get_db

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok", "service": settings.APP_NAME}


@router.get("/ready")
async def ready(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        api_logger.error("Readiness DB check failed", error=e)
        raise HTTPException(status_code=503, detail="Not ready")
    return {"status": "ready"}
