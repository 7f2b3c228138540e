from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from app.assessment.clock import utcnow
from app.assessment.dependencies import get_db, get_judge
from app.assessment.judge_client import JudgeClient
from app.system.logger import get_logger

logger = get_logger("health")

router = APIRouter(tags=["System"])


async def check_database(db: AsyncIOMotorDatabase) -> dict:
    start = utcnow()
    try:
        await db.command("ping")
    except PyMongoError as e:
        logger.warning(f"Database health check failed: {e}")
        return {"status": "DOWN"}
    return {"status": "UP", "latency_ms": (utcnow() - start).total_seconds() * 1000}


async def check_judge(judge: JudgeClient) -> dict:
    start = utcnow()
    if not await judge.ping():
        return {"status": "DOWN"}
    return {"status": "UP", "latency_ms": (utcnow() - start).total_seconds() * 1000}


@router.get("/health")
async def health(
    db: AsyncIOMotorDatabase = Depends(get_db),
    judge: JudgeClient = Depends(get_judge)
):
    """
    Liveness plus dependency status. The service itself is UP if this runs;
    the judge being down only affects code execution.
    """
    record = {
        "status": "ok",
        "timestamp": utcnow(),
        "dependencies": {
            "database": await check_database(db),
            "judge": await check_judge(judge)
        }
    }
    if record["dependencies"]["database"]["status"] != "UP":
        record["status"] = "degraded"
    return record
