"""
Report Engine — academic performance aggregation and ranking.
FastAPI backend entry point.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routes.exams import router as exams_router
from routes.grading import router as grading_router
from routes.payload import tie_tolerance
from routes.rankings import router as rankings_router
from routes.report_cards import router as report_cards_router

# Load environment
load_dotenv()

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Report Engine API",
    description=(
        "Academic performance aggregation, tie-aware ranking, grading and "
        "report-card assembly with a draft/published gate."
    ),
    version="1.0.0",
)

# CORS for the frontend dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register route modules
app.include_router(rankings_router, prefix="/api/rankings", tags=["Rankings"])
app.include_router(report_cards_router, prefix="/api/report-cards", tags=["Report Cards"])
app.include_router(exams_router, prefix="/api/exams", tags=["Exams"])
app.include_router(grading_router, prefix="/api/grading", tags=["Grading"])


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "school_name": SCHOOL_NAME,
    }


@app.get("/api/config")
async def get_config():
    """Return server configuration to the frontend."""
    return {
        "school_name": SCHOOL_NAME,
        "rank_tie_tolerance": tie_tolerance(),
    }
