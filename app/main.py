from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient

from app.assessment import config
from app.assessment.database import MongoAssessmentStore
from app.assessment.errors import PersistenceError
from app.assessment.router import router as assessment_router
from app.system.health_router import router as health_router
from app.system.logger import setup_logger

logger = setup_logger()

# MongoDB Configuration
client = AsyncIOMotorClient(config.MONGO_URL)
db = client[config.MONGO_DB_NAME]


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await MongoAssessmentStore(db).create_indexes()
    except PersistenceError as e:
        # Serve anyway; the store reports failures per request
        logger.error(f"Startup index creation failed: {e}")
    logger.info("Assessment engine started")
    yield
    client.close()


app = FastAPI(title="Assessment Engine", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

# ==================== ROUTER REGISTRATION ====================
app.include_router(assessment_router)
app.include_router(health_router)
# ============================================================


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
