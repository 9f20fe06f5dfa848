import logging
from datetime import datetime
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient

from app.courses.app import setup_course_routes, startup_course_system
from app.courses.config import MONGO_URL, MONGO_DB_NAME, LOG_LEVEL, LOG_FORMAT

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

app = FastAPI(title="Course Ratings Service")

# MongoDB Configuration
client = AsyncIOMotorClient(MONGO_URL)
db = client[MONGO_DB_NAME]


@app.on_event("startup")
async def startup_event():
    await startup_course_system(db)
    logger.info(f"Connected to MongoDB database '{MONGO_DB_NAME}'")


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== ROUTER REGISTRATION ====================
setup_course_routes(app)
# ============================================================


@app.get("/health")
async def health():
    return {"status": "ok", "service": "course-ratings", "timestamp": datetime.utcnow()}
