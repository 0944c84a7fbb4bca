import logging

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .access_control import api as auth_api
from .credit_applications import api as applications_api
from .database import create_all_tables, get_db
from .logging_config import configure_logging
from .risk_assessment import api as ai_api
from .risk_assessment.services import risk_assessment_service
from .utils import utcnow

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Credit Manager",
    description="Credit application lifecycle, risk assessment and audit trail API.",
    version="0.1.0",
)


@app.on_event("startup")
async def startup_event():
    # Tables are created on start for development; use migrations in production
    create_all_tables()
    risk_assessment_service.initialize()


@app.on_event("shutdown")
async def shutdown_event():
    risk_assessment_service.dispose()


app.include_router(auth_api.router, prefix="/api/auth")
app.include_router(applications_api.router, prefix="/api/credit")
app.include_router(ai_api.router, prefix="/api/ai")


@app.get("/health", tags=["System"])
def health_check(db: Session = Depends(get_db)):
    """
    Health check endpoint. Verifies the database connection and scoring engine.
    """
    try:
        db.execute(text("SELECT 1")).fetchone()
        db_status = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Database connection error: {e}")
        db_status = "disconnected"

    healthy = db_status == "connected" and risk_assessment_service.is_ready
    return {
        "status": "ok" if healthy else "degraded",
        "database": db_status,
        "timestamp": utcnow().isoformat(),
        "scoring_engine": risk_assessment_service.status().health,
    }


def run():
    import uvicorn
    uvicorn.run("credit_manager.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    # Or from the command line: uvicorn credit_manager.main:app --reload
    run()
