from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from medibook.core import config


engine = create_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_booking_schema_checked = False


def ensure_booking_schema() -> None:
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        inspector = inspect(engine)
        table_names = set(inspector.get_table_names())

        with engine.begin() as connection:
            if 'availability' in table_names:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_availability_doctor_day ON availability(doctor_id, day_of_week)')
                )
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_availability_booked_start ON availability(is_booked, start_time)')
                )
            if 'appointments' in table_names:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_appointments_slot_status ON appointments(slot_id, status)')
                )

        _booking_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
