from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from app.courses.auth_utils import verify_access_token

def get_db_instance():
    """Get database from main module"""
    from app.main import db
    return db

# ==================== DEPENDENCY FUNCTIONS ====================

async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency"""
    return get_db_instance()

async def get_current_user_id(token_payload: dict = Depends(verify_access_token)) -> str:
    """The token subject is the user_id used across enrollments and ratings"""
    return token_payload["sub"]
