"""
Re-append audit entries that were spooled while the audit store was failing.

Entries that still cannot be written stay in the spool for the next run.
"""

import sys
import os
import logging

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dotenv import load_dotenv

load_dotenv()

from spendguard.config import AppConfig
from spendguard.core.database import SessionLocal, init_db
from spendguard.core.errors import AuditWriteError
from spendguard.services.audit_service import AuditService

config = AppConfig.from_env()

logging.basicConfig(
    level=getattr(logging, config.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    init_db()
    db = SessionLocal()
    try:
        replayed = AuditService(db, config.audit).replay_spool()
        logger.info(f"Replayed {replayed} audit entries from {config.audit.spool_path}")
        return 0
    except AuditWriteError as e:
        logger.error(f"Replay stopped, remaining entries kept in {config.audit.spool_path}: {e}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
