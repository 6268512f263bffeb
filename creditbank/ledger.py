"""Completion ledger writes."""
import logging

from sqlalchemy.exc import IntegrityError

from . import db
from .errors import (
    DataStoreError,
    DuplicateCompletion,
    NotFound,
    SemesterOrderingViolation,
    ValidationError,
)
from .models import CompletedCourse, Course, Student

logger = logging.getLogger(__name__)


def _is_unique_violation(err):
    msg = str(err.orig).lower()
    return (
        'uq_completed_student_course' in msg
        or 'unique' in msg
        or 'duplicate' in msg
    )


def mark_completed(student_id, course_id):
    """Record a completion, snapshotting the course's credits and semester.

    Duplicates are detected by the unique constraint on insert, not by a
    lookup beforehand.
    """
    student = db.session.get(Student, student_id)
    if not student or not student.is_active:
        raise NotFound(f"Student {student_id} not found")
    course = db.session.get(Course, course_id)
    if not course or not course.is_active:
        raise NotFound(f"Course {course_id} not found")

    if student.semester is None:
        raise ValidationError("Select your current semester before completing courses")
    if course.semester > student.semester:
        raise SemesterOrderingViolation(
            f"Course {course.course_code} is offered in semester {course.semester}, "
            f"student is in semester {student.semester}"
        )

    record = CompletedCourse(
        student_id=student.id,
        course_id=course.id,
        semester=course.semester,
        credit_awarded=course.credits,
    )
    db.session.add(record)
    try:
        db.session.commit()
    except IntegrityError as ie:
        db.session.rollback()
        if _is_unique_violation(ie):
            raise DuplicateCompletion() from ie
        raise DataStoreError("Could not record completion") from ie

    logger.info("Student %s completed course %s (%s credits)",
                student.id, course.course_code, record.credit_awarded)
    return record


def unmark_completed(student_id, course_id):
    """Delete the completion for the pair. Returns whether a row was removed."""
    deleted = (
        CompletedCourse.query
        .filter_by(student_id=student_id, course_id=course_id)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    if deleted:
        logger.info("Student %s un-completed course %s", student_id, course_id)
    return bool(deleted)


def completed_course_ids(student_id):
    rows = db.session.query(CompletedCourse.course_id).filter_by(student_id=student_id).all()
    return {course_id for (course_id,) in rows}
