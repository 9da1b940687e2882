from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from spendguard.config import DatabaseConfig

# If DATABASE_URL is provided directly, use it; otherwise construct from components
DATABASE_URL = DatabaseConfig().url

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # Background detection runs on worker threads with their own sessions
    connect_args = {"check_same_thread": False, "timeout": 30}

engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Import all models to register them with Base
def register_models():
    from spendguard.models import Transaction, Budget, Anomaly, AuditLog
    return True

def init_db():
    """Create any missing tables."""
    register_models()
    Base.metadata.create_all(bind=engine)

# Dependency for FastAPI routes
def get_db():
    """Database session dependency for FastAPI routes"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
