from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from booking_backend.core import config


def _engine_options(database_url: str | None) -> dict:
    if database_url and database_url.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}
    return {}


engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_booking_schema_checked = False

BOOKING_INDEXES = {
    'company_appointments': [
        'CREATE INDEX IF NOT EXISTS idx_appointments_company_range '
        'ON company_appointments(company_id, start_at, end_at)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_company_status '
        'ON company_appointments(company_id, status, start_at)',
    ],
    'company_appointment_holds': [
        'CREATE INDEX IF NOT EXISTS idx_holds_company_range '
        'ON company_appointment_holds(company_id, start_at, end_at)',
        'CREATE INDEX IF NOT EXISTS idx_holds_expires_at ON company_appointment_holds(expires_at)',
    ],
    'company_leads': [
        'CREATE INDEX IF NOT EXISTS idx_leads_company_email ON company_leads(company_id, email)',
        'CREATE INDEX IF NOT EXISTS idx_leads_company_phone ON company_leads(company_id, phone)',
    ],
}


def ensure_booking_schema(bind=None) -> None:
    global _booking_schema_checked

    if _booking_schema_checked and bind is None:
        return

    with _schema_lock:
        if _booking_schema_checked and bind is None:
            return

        target = bind or engine
        existing_tables = set(inspect(target).get_table_names())

        with target.begin() as connection:
            for table_name, statements in BOOKING_INDEXES.items():
                if table_name not in existing_tables:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        if bind is None:
            _booking_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
