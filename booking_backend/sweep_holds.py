"""Delete expired appointment holds.

Expired holds are already ignored by every availability and conflict query;
this only keeps the table small. Safe to run from cron at any interval.

Usage:
    python -m booking_backend.sweep_holds
"""
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from booking_backend.database import SessionLocal
from booking_backend.services.holds import sweep_expired_holds


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    db = SessionLocal()
    try:
        deleted = sweep_expired_holds(db)
    except SQLAlchemyError as exc:
        db.rollback()
        print("Hold sweep failed:", exc, file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()
    print(f"Deleted {deleted} expired holds.")


if __name__ == "__main__":
    main()
