"""
Course Ratings Configuration
Database, auth and rating policy settings
"""

import os

# MongoDB
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "courses_db")

# Auth (shared HS256 secret with the token issuer)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
JWT_ALGORITHM = "HS256"

# Rating submission transaction
RATING_TRANSACTION_MAX_RETRIES = int(os.getenv("RATING_TRANSACTION_MAX_RETRIES", "5"))

# Rating prompt thresholds (percent of lessons viewed)
PROMPT_MIN_PROGRESS_PERCENT = 50
SINGLE_LESSON_MIN_PROGRESS_PERCENT = 100

# Listings
RECENT_RATINGS_LIMIT = 5
TOP_RATED_MIN_RATINGS = 3
TOP_RATED_LIMIT = 10

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
