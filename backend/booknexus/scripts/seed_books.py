# backend/booknexus/scripts/seed_books.py

"""
Seed the Book Nexus catalog from a CSV file.

Usage examples:

  # Default: SEED_CSV_PATH (data/books.csv)
  cd backend
  python -m booknexus.scripts.seed_books

  # Seed a specific file
  python -m booknexus.scripts.seed_books --csv data/goodreads_export.csv

Re-running on the same file is safe: books already stored (same ISBN-13)
and existing authors/publishers/series are reused, not duplicated.
Ctrl-C stops after the current row; rows already written stay.
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from booknexus.core.config import settings
from booknexus.core.errors import MalformedInput
from booknexus.database import SessionLocal, init_db
from booknexus.services.ingestion import ingest_file
from booknexus.utils.timing import time_operation

logger = logging.getLogger(__name__)


def seed_books(csv_path: Path, cancel_event: threading.Event) -> int:
    db = SessionLocal()
    try:
        with time_operation(f"[seed_books] Ingest {csv_path.name}", logger.info):
            report = ingest_file(db, csv_path, cancel_event=cancel_event)
    except MalformedInput as e:
        print(f"[seed_books] Cannot import {csv_path}: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()

    print(
        f"[seed_books] Seed {'cancelled' if report.cancelled else 'complete'}. "
        f"Inserted={report.inserted}, Skipped={report.skipped} "
        f"(duplicates={report.duplicates})"
    )
    print(
        f"[seed_books] Created authors={report.created_authors}, "
        f"publishers={report.created_publishers}, series={report.created_series}"
    )
    return 130 if report.cancelled else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Seed the Book Nexus catalog from a CSV file."
    )
    parser.add_argument(
        "--csv",
        "-f",
        dest="csv_path",
        default=settings.SEED_CSV_PATH,
        help=f"Path to the CSV file to seed from (default: {settings.SEED_CSV_PATH})",
    )
    parser.add_argument(
        "--skip-init-db",
        action="store_true",
        help="Do not create missing tables before seeding.",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    csv_path = Path(args.csv_path).resolve()
    if not csv_path.exists():
        print(f"[seed_books] CSV file not found at {csv_path}", file=sys.stderr)
        return 1

    if not args.skip_init_db:
        print("[seed_books] Ensuring tables exist...")
        init_db()

    cancel_event = threading.Event()

    def _request_stop(signum, frame):
        print("[seed_books] Stop requested, finishing current row...", file=sys.stderr)
        cancel_event.set()

    signal.signal(signal.SIGINT, _request_stop)

    print(f"[seed_books] Seeding database from CSV file: {csv_path}")
    return seed_books(csv_path, cancel_event)


if __name__ == "__main__":
    sys.exit(main())
