import os
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('GEMINI_API_KEY', '')

from medibook.database import Base  # noqa: E402
from medibook.models.appointment import Appointment  # noqa: E402
from medibook.models.availability import Availability  # noqa: E402
from medibook.models.user import DOCTOR, PATIENT, User  # noqa: E402
from medibook.services.availability_manager import AvailabilityManager  # noqa: E402
from medibook.services.booking import BookingStateMachine  # noqa: E402
from medibook.stores.appointment_store import AppointmentStore  # noqa: E402
from medibook.stores.slot_store import SlotStore  # noqa: E402

# A Monday morning; every test runs against this clock.
NOW = datetime(2030, 1, 7, 8, 0)

TABLES = [User.__table__, Availability.__table__, Appointment.__table__]


@pytest.fixture
def booking_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=TABLES)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))


@pytest.fixture
def make_user(booking_db):
    counter = {'value': 0}

    def factory(role: str = PATIENT, **fields) -> User:
        counter['value'] += 1
        fields.setdefault('email', f'{role}{counter["value"]}@example.com')
        fields.setdefault('first_name', role.capitalize())
        fields.setdefault('last_name', f'User{counter["value"]}')
        fields.setdefault('status', 'verified')
        user = User(role=role, hashed_password='', **fields)
        booking_db.add(user)
        booking_db.commit()
        booking_db.refresh(user)
        return user

    return factory


@pytest.fixture
def doctor(make_user):
    return make_user(DOCTOR, first_name='Gregory', last_name='House', specialization='Cardiologist', hospital='Princeton')


@pytest.fixture
def patient(make_user):
    return make_user(PATIENT, first_name='Ada', last_name='Lovelace')


@pytest.fixture
def slot_store(booking_db):
    return SlotStore(booking_db)


@pytest.fixture
def appointment_store(booking_db):
    return AppointmentStore(booking_db)


@pytest.fixture
def manager(slot_store, appointment_store):
    return AvailabilityManager(slot_store, appointment_store, clock=lambda: NOW)


@pytest.fixture
def booking(slot_store, appointment_store):
    return BookingStateMachine(slot_store, appointment_store, clock=lambda: NOW)


@pytest.fixture
def make_slot(manager):
    def factory(doctor_id: int, days_ahead: int = 1, hour: int = 9, minute: int = 0, minutes: int = 30):
        start = (NOW + timedelta(days=days_ahead)).replace(hour=hour, minute=minute)
        return manager.create_slot(doctor_id, start, start + timedelta(minutes=minutes), start.strftime('%A'))

    return factory
