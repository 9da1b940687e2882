"""
Periodic silent-leak scan.

Finds owners with spending in the trailing leak window (or the owners given
with --owner) and records a SILENT_LEAK anomaly for every category that keeps
leaking small charges. Safe to run repeatedly: findings are idempotent.
"""

import sys
import os
import argparse
import logging
from datetime import datetime, timedelta
from tqdm import tqdm

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dotenv import load_dotenv

load_dotenv()

from spendguard.config import AppConfig
from spendguard.core.database import SessionLocal, init_db
from spendguard.core.errors import HistoryUnavailable
from spendguard.services.classifier_service import make_classifier
from spendguard.services.detection_service import DetectionService

config = AppConfig.from_env()

logging.basicConfig(
    level=getattr(logging, config.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Scan for silent leaks")
    parser.add_argument("--as-of", default=None, help="End of the scan window (ISO date/time, default now)")
    parser.add_argument("--owner", action="append", default=None, help="Owner id to scan (repeatable)")
    args = parser.parse_args()

    as_of = datetime.fromisoformat(args.as_of) if args.as_of else datetime.utcnow()
    init_db()
    db = SessionLocal()

    try:
        service = DetectionService(db, config=config.detection, classifier=make_classifier(config.llm))
        owner_ids = args.owner
        if owner_ids is None:
            since = as_of - timedelta(days=config.detection.leak_window_days)
            try:
                owner_ids = service.history.owners_with_activity(since, as_of)
            except HistoryUnavailable as e:
                logger.error(f"Could not list owners: {e}")
                return 1

        logger.info(f"Scanning {len(owner_ids)} owners for silent leaks as of {as_of.isoformat()}")
        found = 0
        for owner_id in tqdm(owner_ids, desc="Scanning owners"):
            found += len(service.detect_leaks(owner_id, as_of))

        logger.info(f"Leak scan complete: {found} new anomalies")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
