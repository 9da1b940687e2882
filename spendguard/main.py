from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from typing import List
import logging
import os

# Load environment variables from .env file before reading any config
load_dotenv()

from spendguard.config import AppConfig

config = AppConfig.from_env()

logging.basicConfig(
    level=getattr(logging, config.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from spendguard.core.database import init_db
from spendguard.services.classifier_service import make_classifier
from spendguard.api import transactions as transaction_router
from spendguard.api import security as security_router

init_db()

app = FastAPI(
    title="Spendguard",
    description="Anomaly detection and review for personal finance records",
    version="1.0.0"
)
app.state.config = config
app.state.classifier = make_classifier(config.llm)
logger.info(f"AI irregularity classifier {'enabled' if app.state.classifier else 'disabled'}")


def _build_allowed_origins() -> List[str]:
    """Origins allowed by CORS; local dev servers are always allowed in development."""
    raw = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    configured = {origin.strip() for origin in raw.split(",") if origin.strip()}

    if os.getenv("ENVIRONMENT", "development") == "development":
        configured.update({"http://localhost:5173", "http://127.0.0.1:5173"})

    return sorted(configured)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_build_allowed_origins(),
    allow_origin_regex=os.getenv("ALLOWED_ORIGIN_REGEX", r"http://(?:127\.0\.0\.1|localhost):\d+$"),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(transaction_router.router, prefix="/api", tags=["transactions"])
app.include_router(security_router.router, prefix="/api", tags=["security"])


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
