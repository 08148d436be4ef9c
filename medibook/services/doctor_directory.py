"""Doctor search used by the chat assistant."""

import logging
import re

from sqlalchemy import or_
from sqlalchemy.orm import Session

from medibook.core import config
from medibook.models.user import DOCTOR, User

logger = logging.getLogger(__name__)

SPECIALTY_KEYWORDS = {
    'heart': ['Cardiologist', 'Cardiac Surgeon'],
    'skin': ['Dermatologist'],
    'children': ['Pediatrician'],
    'kidney': ['Nephrologist'],
    'stomach': ['Gastroenterologist'],
    'brain': ['Neurologist'],
    'cancer': ['Oncologist'],
    'bone': ['Orthopedic Surgeon', 'Rheumatologist'],
    'eye': ['Ophthalmologist'],
    'ear': ['Otolaryngologist', 'ENT Specialist'],
    'nose': ['Otolaryngologist', 'ENT Specialist'],
    'throat': ['Otolaryngologist', 'ENT Specialist'],
    'headache': ['Neurologist'],
}

MIN_NAME_PART_LENGTH = 3

_DOCTOR_PREFIX = re.compile(r'^dr\.?\s*', re.IGNORECASE)


def expand_specialties(query: str) -> list[str]:
    """Map symptom keywords in ``query`` to the specialties that treat them."""
    lower_query = query.lower()
    matched: list[str] = []
    for keyword, specialties in SPECIALTY_KEYWORDS.items():
        # Word-prefix match so "eyes" counts but "heart" does not hit "ear".
        if re.search(rf"\b{keyword}", lower_query):
            matched.extend(specialty for specialty in specialties if specialty not in matched)
    return matched


class DoctorDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_doctor(self, doctor_id: int) -> User | None:
        return (
            self.db.query(User)
            .filter(User.id == doctor_id, User.role == DOCTOR)
            .first()
        )

    def find_doctors(self, query: str | None = None, limit: int = config.DOCTOR_SEARCH_LIMIT) -> list[User]:
        db_query = self.db.query(User).filter(User.role == DOCTOR, User.status == 'verified')

        trimmed = query.strip() if isinstance(query, str) else ''
        if trimmed:
            pattern = f'%{trimmed}%'
            conditions = [
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
                User.specialization.ilike(pattern),
                User.hospital.ilike(pattern),
            ]

            if ' ' in trimmed or trimmed.lower().startswith('dr.'):
                name_parts = [part for part in _DOCTOR_PREFIX.sub('', trimmed).split(' ') if len(part) >= MIN_NAME_PART_LENGTH]
                for part in name_parts:
                    conditions.append(User.first_name.ilike(f'%{part}%'))
                    conditions.append(User.last_name.ilike(f'%{part}%'))

            specialties = expand_specialties(trimmed)
            if specialties:
                conditions.append(User.specialization.in_(specialties))

            db_query = db_query.filter(or_(*conditions))
        else:
            logger.info('No doctor query given, returning a general list of verified doctors.')

        doctors = db_query.order_by(User.last_name.asc(), User.id.asc()).limit(limit).all()
        logger.info('Found %d doctors matching query %r', len(doctors), trimmed or None)
        return doctors
