"""
Program structure reference data and the cached requirements lookup.

The tables below are the hand-authored credit distribution for the BTech
programme. They seed the ``program_structure`` table and act as the fallback
source when that table has not been populated yet.
"""
import logging
import time
from collections import defaultdict

from sqlalchemy import select

from . import db
from .models import Basket, ProgramStructure, Vertical

logger = logging.getLogger(__name__)

SEMESTERS = tuple(range(1, 9))
COURSE_TYPES = ('Theory', 'Practical')

VERTICALS = [
    ('BSC', 'Basic Science'),
    ('ESC', 'Engineering Science'),
    ('PCC', 'Program Core Course'),
    ('PEC', 'Program Elective Course'),
    ('MDM', 'Multidisciplinary Minor'),
    ('OE', 'Open Elective'),
    ('VSEC', 'Vocational & Skill Enhancement'),
    ('AEC', 'Ability Enhancement Course'),
    ('EEMC', 'Entrepreneurship/Economics/Management'),
    ('IKS', 'Indian Knowledge System'),
    ('VEC', 'Value Education Course'),
    ('CC', 'Co-Curricular Courses'),
    ('RM', 'Research Methodology'),
    ('CEP', 'Community Engineering Project'),
    ('PROJ', 'Project'),
    ('INTP', 'Internship/OJT'),
]

# (basket code, basket name, vertical code)
BASKETS = [
    ('BSC', 'Basic Science', 'BSC'),
    ('ESC', 'Engineering Science', 'ESC'),
    ('PCC', 'Programme Core Course', 'PCC'),
    ('PEC', 'Programme Elective Course', 'PEC'),
    ('MDM', 'Multidisciplinary Minor', 'MDM'),
    ('OE', 'Open Elective', 'OE'),
    ('VSEC', 'Vocational & Skill Enhancement Course', 'VSEC'),
    ('AEC', 'Ability Enhancement Course', 'AEC'),
    ('EEMC', 'Entrepreneurship/Economics/Management Course', 'EEMC'),
    ('IKS', 'Indian Knowledge System', 'IKS'),
    ('VEC', 'Value Education Course', 'VEC'),
    ('CC', 'Co-Curricular Courses', 'CC'),
    ('RM', 'Research Methodology', 'RM'),
    ('CEP', 'Community Engineering Project', 'CEP'),
    ('PROJ', 'Project', 'PROJ'),
    ('INTP', 'Internship/OJT', 'INTP'),
]

# (vertical, basket, semester, recommended credits)
PROGRAM_STRUCTURE = [
    ('BSC', 'BSC', 1, 6), ('ESC', 'ESC', 1, 6), ('VSEC', 'VSEC', 1, 3),
    ('AEC', 'AEC', 1, 3), ('VEC', 'VEC', 1, 3),

    ('BSC', 'BSC', 2, 3), ('ESC', 'ESC', 2, 6), ('VSEC', 'VSEC', 2, 3),
    ('MDM', 'MDM', 2, 2), ('AEC', 'AEC', 2, 1), ('IKS', 'IKS', 2, 2),
    ('CC', 'CC', 2, 2),

    ('BSC', 'BSC', 3, 3), ('PCC', 'PCC', 3, 9), ('MDM', 'MDM', 3, 3),
    ('VSEC', 'VSEC', 3, 2), ('CC', 'CC', 3, 2),

    ('BSC', 'BSC', 4, 3), ('PCC', 'PCC', 4, 12), ('MDM', 'MDM', 4, 3),

    ('PCC', 'PCC', 5, 12), ('PEC', 'PEC', 5, 3), ('MDM', 'MDM', 5, 3),
    ('OE', 'OE', 5, 3), ('EEMC', 'EEMC', 5, 3), ('INTP', 'INTP', 5, 2),

    ('PCC', 'PCC', 6, 9), ('PEC', 'PEC', 6, 6), ('MDM', 'MDM', 6, 3),
    ('EEMC', 'EEMC', 6, 3), ('CEP', 'CEP', 6, 2), ('INTP', 'INTP', 6, 2),

    ('PCC', 'PCC', 7, 3), ('PEC', 'PEC', 7, 9), ('OE', 'OE', 7, 5),
    ('EEMC', 'EEMC', 7, 3), ('INTP', 'INTP', 7, 2),

    ('AEC', 'AEC', 8, 3), ('EEMC', 'EEMC', 8, 3), ('RM', 'RM', 8, 3),
    ('PROJ', 'PROJ', 8, 6), ('INTP', 'INTP', 8, 15),
]

DEGREES = {
    'BTech': 'Bachelor of Technology',
    'MTech': 'Master of Technology',
    'BSc': 'Bachelor of Science',
    'MSc': 'Master of Science',
}

BRANCHES = {
    'INFT': 'Information Technology',
    'COMP': 'Computer Engineering',
    'EXTC': 'Electronics & Telecommunication',
    'MECH': 'Mechanical Engineering',
    'CIVIL': 'Civil Engineering',
    'ELEX': 'Electrical Engineering',
}


def branch_code(value):
    """Accept either a branch code or its display name."""
    if value in BRANCHES:
        return value
    for code, name in BRANCHES.items():
        if name.lower() == (value or '').strip().lower():
            return code
    return None


class TTLCache:
    """Key -> (value, expiry) store. ``clock`` must be monotonic seconds."""

    def __init__(self, ttl, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries = {}

    def get(self, key, default=None):
        entry = self._entries.get(key)
        if entry is None:
            return default
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return default
        return value

    def set(self, key, value):
        self._entries[key] = (value, self._clock() + self.ttl)

    def invalidate(self, key=None):
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key):
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self):
        return len(self._entries)


_MISSING = object()
_TABLE_KEY = ("__table__", 0)


class ProgramStructureStore:
    """Read path for recommended credits.

    Entries are cached per ``(vertical_code, semester)``; the cached value maps
    basket code to recommended credits. A miss reloads the whole table, so one
    cold request costs a single query. Slots with no structure rows cache as
    ``None``, which callers read as "no requirement defined". While the table
    marker is fresh, keys never seen in the table (unknown verticals) also
    answer ``None`` without another reload.
    """

    def __init__(self, ttl=300, clock=time.monotonic):
        self.cache = TTLCache(ttl, clock=clock)
        self.source = None

    def _load_rows(self):
        rows = db.session.execute(
            select(Vertical.code, Basket.code, ProgramStructure.semester,
                   ProgramStructure.recommended_credits)
            .join(Vertical, ProgramStructure.vertical_id == Vertical.id)
            .join(Basket, ProgramStructure.basket_id == Basket.id)
        ).all()
        if rows:
            self.source = 'database'
            return [tuple(row) for row in rows]

        logger.warning("program_structure table is empty, using built-in configuration")
        self.source = 'configuration'
        return list(PROGRAM_STRUCTURE)

    def _refresh(self):
        slots = defaultdict(dict)
        for vertical, basket, semester, credits in self._load_rows():
            slots[(vertical, semester)][basket] = int(credits)

        # Marker first: it must not outlive the slots written after it.
        self.cache.set(_TABLE_KEY, True)
        for vertical in {vertical for vertical, _ in slots}:
            for semester in SEMESTERS:
                self.cache.set((vertical, semester), slots.get((vertical, semester)))
        logger.debug("Cached %d program structure slots", len(slots))
        return slots

    def slot(self, vertical, semester):
        key = (vertical, int(semester))
        cached = self.cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        if _TABLE_KEY in self.cache:
            return None
        return self._refresh().get(key)

    def recommended_credits(self, vertical, semester, basket=None):
        baskets = self.slot(vertical, semester)
        if not baskets:
            return 0
        if basket is None:
            return sum(baskets.values())
        return baskets.get(basket, 0)

    def vertical_requirements(self, verticals):
        """Total recommended credits per vertical across all semesters.

        Verticals with no structure entry at all are left out of the result.
        """
        required = {}
        for vertical in verticals:
            slots = [self.slot(vertical, semester) for semester in SEMESTERS]
            if all(s is None for s in slots):
                continue
            required[vertical] = sum(sum(s.values()) for s in slots if s)
        return required

    def basket_requirements(self, pairs):
        required = {}
        for vertical, basket in pairs:
            found = False
            total = 0
            for semester in SEMESTERS:
                baskets = self.slot(vertical, semester)
                if baskets and basket in baskets:
                    found = True
                    total += baskets[basket]
            if found:
                required[(vertical, basket)] = total
        return required

    def semester_totals(self, verticals):
        return {
            semester: sum(self.recommended_credits(v, semester) for v in verticals)
            for semester in SEMESTERS
        }

    def invalidate(self):
        self.cache.invalidate()


def get_program_structure():
    from flask import current_app

    return current_app.extensions["program_structure"]
