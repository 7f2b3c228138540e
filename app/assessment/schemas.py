"""
MongoDB collection schemas and indexes for the assessment engine.

Content documents (tests, assignments) are authored elsewhere; the engine
only reads them. Results are written here, one per student and content item.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from app.system.logger import get_logger

logger = get_logger("schemas")

_QUESTION_ITEM = {
    "bsonType": "object",
    "required": ["type", "text", "correct_answer"],
    "properties": {
        "question_id": {"bsonType": ["string", "null"]},
        "type": {"enum": ["mcq", "fill", "code"]},
        "text": {"bsonType": "string"},
        "points": {"bsonType": ["int", "long"], "minimum": 0},
        "options": {"bsonType": "array"},
        "correct_answer": {"bsonType": ["string", "int"]},
        "code_template": {"bsonType": "string"},
        "test_cases": {"bsonType": "array"},
        "language": {"bsonType": ["string", "null"]}
    }
}

# ==================== CONTENT ====================

TESTS_SCHEMA = {
    "validator": {
        "$jsonSchema": {
            "bsonType": "object",
            "required": ["test_id", "course_id", "questions"],
            "properties": {
                "test_id": {"bsonType": "string"},
                "course_id": {"bsonType": "string"},
                "title": {"bsonType": "string"},
                "questions": {"bsonType": "array", "items": _QUESTION_ITEM},
                "time_limit_minutes": {"bsonType": ["int", "null"], "minimum": 1},
                "visibility": {"enum": ["public", "private"]},
                "assigned_to": {"bsonType": "array"}
            }
        }
    }
}

ASSIGNMENTS_SCHEMA = {
    "validator": {
        "$jsonSchema": {
            "bsonType": "object",
            "required": ["assignment_id", "course_id", "questions"],
            "properties": {
                "assignment_id": {"bsonType": "string"},
                "course_id": {"bsonType": "string"},
                "title": {"bsonType": "string"},
                "questions": {"bsonType": "array", "items": _QUESTION_ITEM},
                "time_window": {
                    "bsonType": ["object", "null"],
                    "properties": {
                        "start_time": {"bsonType": "date"},
                        "end_time": {"bsonType": "date"}
                    }
                },
                "due_date": {"bsonType": ["date", "null"]},
                "visibility": {"enum": ["public", "private"]},
                "assigned_to": {"bsonType": "array"}
            }
        }
    }
}

# ==================== RESULTS ====================

RESULTS_SCHEMA = {
    "validator": {
        "$jsonSchema": {
            "bsonType": "object",
            "required": ["result_id", "student_id", "course_id", "type", "score", "max_score", "submitted_at"],
            "properties": {
                "result_id": {"bsonType": "string"},
                "student_id": {"bsonType": "string"},
                "student_name": {"bsonType": "string"},
                "course_id": {"bsonType": "string"},
                "test_id": {"bsonType": ["string", "null"]},
                "assignment_id": {"bsonType": ["string", "null"]},
                "type": {"enum": ["test", "assignment"]},
                "title": {"bsonType": "string"},
                "answers": {"bsonType": "array"},
                "score": {"bsonType": ["int", "long"], "minimum": 0, "maximum": 100},
                "max_score": {"bsonType": ["int", "long"], "minimum": 0},
                "submitted_at": {"bsonType": "date"},
                "time_spent": {"bsonType": ["int", "long", "null"]},
                "status": {"enum": ["completed", "overdue"]},
                "late": {"bsonType": "bool"},
                "updated_at": {"bsonType": "date"}
            }
        }
    }
}

# ==================== INDEXES ====================

INDEXES = {
    "results": [
        # One result per student and content item
        {"keys": [("student_id", 1), ("type", 1), ("test_id", 1), ("assignment_id", 1)], "unique": True},
        {"keys": [("result_id", 1)], "unique": True},
        {"keys": [("type", 1), ("course_id", 1), ("submitted_at", -1)]}
    ],

    "tests": [
        {"keys": [("test_id", 1)], "unique": True},
        {"keys": [("course_id", 1)]}
    ],

    "assignments": [
        {"keys": [("assignment_id", 1)], "unique": True},
        {"keys": [("course_id", 1)]}
    ],

    "course_enrollments": [
        {"keys": [("user_id", 1), ("course_id", 1)]}
    ]
}

# ==================== COLLECTION CREATION ====================

async def create_collections_with_validation(db: AsyncIOMotorDatabase):
    """Create collections with schema validation, or refresh the rules on existing ones"""

    schemas = {
        "tests": TESTS_SCHEMA,
        "assignments": ASSIGNMENTS_SCHEMA,
        "results": RESULTS_SCHEMA
    }

    existing_collections = await db.list_collection_names()

    for collection_name, schema in schemas.items():
        if collection_name not in existing_collections:
            await db.create_collection(collection_name, **schema)
            logger.info(f"Created collection: {collection_name}")
        else:
            try:
                await db.command({
                    "collMod": collection_name,
                    **schema
                })
                logger.info(f"Updated validation: {collection_name}")
            except PyMongoError as e:
                logger.warning(f"Could not update validation for {collection_name}: {e}")


async def create_all_indexes(db: AsyncIOMotorDatabase):
    """Create all assessment indexes"""

    for collection_name, indexes in INDEXES.items():
        collection = db[collection_name]
        for index in indexes:
            await collection.create_index(
                index["keys"],
                unique=index.get("unique", False)
            )
            logger.debug(f"Created index on {collection_name}: {index['keys']}")
