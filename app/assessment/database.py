from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from pydantic import ValidationError
from typing import Dict, List, Optional
import uuid

from app.assessment.clock import utcnow
from app.assessment.errors import PersistenceError
from app.assessment.models import ContentItem, ContentType, Result
from app.assessment.schemas import create_all_indexes, create_collections_with_validation
from app.system.logger import get_logger

logger = get_logger("database")

CONTENT_COLLECTIONS = {
    ContentType.TEST: ("tests", "test_id"),
    ContentType.ASSIGNMENT: ("assignments", "assignment_id"),
}


def _content_field(content_type: ContentType) -> str:
    return CONTENT_COLLECTIONS[content_type][1]


def _result_key(result: Result) -> dict:
    """Equality on every field of the unique results index, the other id included as null"""
    return {
        "student_id": result.student_id,
        "type": result.type.value,
        "test_id": result.test_id,
        "assignment_id": result.assignment_id,
    }


class MongoAssessmentStore:
    """Motor-backed storage for content items, enrollments and results."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    # ==================== CONTENT ====================

    async def get_question_set_for_content(
        self,
        content_type: ContentType,
        content_id: str
    ) -> Optional[ContentItem]:
        """Load a test or assignment with its questions; None if it does not exist"""
        collection, field = CONTENT_COLLECTIONS[content_type]
        try:
            doc = await self.db[collection].find_one({field: content_id}, {"_id": 0})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load {content_type.value} {content_id}: {e}") from e

        if not doc:
            return None

        try:
            return ContentItem(
                content_id=content_id,
                content_type=content_type,
                course_id=doc.get("course_id", ""),
                title=doc.get("title", ""),
                questions=doc.get("questions", []),
                time_limit_minutes=doc.get("time_limit_minutes"),
                time_window=doc.get("time_window"),
                due_date=doc.get("due_date"),
                visibility=doc.get("visibility", "public"),
                assigned_to=doc.get("assigned_to", []),
            )
        except ValidationError as e:
            logger.error(f"Stored {content_type.value} {content_id} is malformed: {e}")
            raise PersistenceError(f"Stored {content_type.value} {content_id} is malformed") from e

    # ==================== ENROLLMENTS ====================

    async def is_student_enrolled(self, student_id: str, course_id: str) -> bool:
        try:
            enrollment = await self.db.course_enrollments.find_one(
                {"course_id": course_id, "user_id": student_id, "is_active": True},
                {"_id": 1}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to check enrollment: {e}") from e
        return enrollment is not None

    async def get_student_names(self, student_ids: List[str]) -> Dict[str, str]:
        """user_id -> display name, for results stored without one"""
        if not student_ids:
            return {}
        try:
            cursor = self.db.users.find(
                {"user_id": {"$in": list(student_ids)}},
                {"_id": 0, "user_id": 1, "name": 1, "username": 1}
            )
            users = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load student names: {e}") from e

        return {
            u["user_id"]: u.get("name") or u.get("username") or ""
            for u in users if u.get("user_id")
        }

    # ==================== RESULTS ====================

    async def get_results_by_student_and_content(
        self,
        student_id: str,
        content_type: ContentType,
        content_id: str
    ) -> Optional[Result]:
        field = _content_field(content_type)
        try:
            doc = await self.db.results.find_one(
                {"student_id": student_id, "type": content_type.value, field: content_id},
                {"_id": 0}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load result: {e}") from e
        return Result(**doc) if doc else None

    async def upsert_result(self, result: Result) -> Result:
        """
        Insert or replace the single result for (student, content item).
        Last writer wins; the result_id survives resubmission.
        """
        data = result.model_dump(mode="python", exclude={"result_id"})
        data["type"] = result.type.value
        data["status"] = result.status.value
        data["updated_at"] = utcnow()

        update = {
            "$set": data,
            "$setOnInsert": {"result_id": f"RES_{uuid.uuid4().hex[:12].upper()}"}
        }

        try:
            try:
                doc = await self._upsert(result, update)
            except DuplicateKeyError:
                # A concurrent first submission inserted the document; update it now
                logger.warning(
                    f"Concurrent result insert for {result.student_id} on "
                    f"{result.type.value} {result.content_id}, retrying as update"
                )
                doc = await self._upsert(result, update)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to save result: {e}") from e

        logger.info(
            f"Saved result {doc.get('result_id')} for {result.student_id} "
            f"on {result.type.value} {result.content_id}: {result.score}%"
        )
        return Result(**doc)

    async def _upsert(self, result: Result, update: dict) -> dict:
        return await self.db.results.find_one_and_update(
            _result_key(result),
            update,
            projection={"_id": 0, "updated_at": 0},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )

    async def list_results(
        self,
        content_type: ContentType,
        content_id: Optional[str] = None,
        course_id: Optional[str] = None
    ) -> List[Result]:
        query = {"type": content_type.value}
        if content_id:
            query[_content_field(content_type)] = content_id
        if course_id:
            query["course_id"] = course_id

        try:
            docs = await self.db.results.find(query, {"_id": 0, "updated_at": 0}).to_list(length=None)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to list results: {e}") from e
        return [Result(**doc) for doc in docs]

    # ==================== INDEXES ====================

    async def create_indexes(self):
        """Create collections with validation and the indexes results depend on"""
        try:
            await create_collections_with_validation(self.db)
            await create_all_indexes(self.db)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to create indexes: {e}") from e

        logger.info("Assessment indexes created")
