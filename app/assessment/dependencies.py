from fastapi import Depends, Header, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.assessment.database import MongoAssessmentStore
from app.assessment.engine import AssessmentEngine
from app.assessment.judge_client import JudgeClient


def get_db_instance():
    """Get database from main module"""
    from app.main import db
    return db

# ==================== DEPENDENCY FUNCTIONS ====================

async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency"""
    return get_db_instance()


async def get_judge() -> JudgeClient:
    return JudgeClient()


async def get_engine(
    db: AsyncIOMotorDatabase = Depends(get_db),
    judge: JudgeClient = Depends(get_judge)
) -> AssessmentEngine:
    return AssessmentEngine(MongoAssessmentStore(db), judge)


async def get_current_user_id(x_user_id: str = Header(None)) -> str:
    """
    Student id forwarded by the gateway after authentication.
    The engine never sees credentials itself.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()
