from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from . import db
from .auth import full_name_of, validate_student_fields
from .courses import parse_semester, whole_number
from .credits import progress_report, student_basket_credits, student_credit_summary
from .errors import AccessDenied, NotFound, ValidationError
from .ledger import mark_completed, unmark_completed
from .models import CompletedCourse, Student
from .security import ensure_student_access, student_required

student_api = Blueprint("student_api", __name__)


def _get_student(student_id):
    student = db.session.get(Student, student_id)
    if not student:
        raise NotFound(f"Student {student_id} not found")
    return student


def _course_id(data):
    if data.get("course_id") is None:
        raise ValidationError("course_id is required")
    return whole_number(data["course_id"], "course_id")


# ==========================================================
# PROFILE
# ==========================================================
@student_api.route("/students/<int:student_id>", methods=["GET"])
@login_required
def get_student(student_id):
    ensure_student_access(student_id)
    return jsonify({"success": True, "data": _get_student(student_id).to_dict()})


@student_api.route("/students/<int:student_id>", methods=["PATCH"])
@student_required
def update_profile(student_id):
    """Students edit their own names and division; enrollment fields are admin-only."""
    ensure_student_access(student_id, write=True)
    student = _get_student(student_id)
    data = request.get_json(silent=True) or {}
    allowed = {k: v for k, v in data.items() if k in ("first_name", "last_name", "legal_name", "division")}
    if not allowed:
        raise ValidationError("Nothing to update")

    fields = validate_student_fields(allowed, partial=True)
    for name in ("first_name", "last_name"):
        if name in fields and not fields[name]:
            raise ValidationError("First name and last name cannot be blank.")
    for name, value in fields.items():
        setattr(student, name, value)
    student.full_name = full_name_of(student.first_name, student.last_name)
    db.session.commit()
    return jsonify({"success": True, "data": student.to_dict(), "message": "Profile updated"})


@student_api.route("/students/<int:student_id>/semester", methods=["PATCH", "PUT"])
@student_required
def update_semester(student_id):
    if current_user.id != student_id:
        raise AccessDenied("You can only update your own semester")
    data = request.get_json(silent=True) or {}
    student = _get_student(student_id)
    student.semester = parse_semester(data.get("semester"))
    db.session.commit()
    current_app.logger.info("Student %s selected semester %s", student.id, student.semester)
    return jsonify({"success": True, "data": student.to_dict(), "message": "Semester updated successfully"})


# ==========================================================
# CREDITS
# ==========================================================
@student_api.route("/students/<int:student_id>/credits", methods=["GET"])
@login_required
def student_credits(student_id):
    ensure_student_access(student_id)
    _get_student(student_id)
    return jsonify({"success": True, "data": student_credit_summary(student_id)})


@student_api.route("/students/<int:student_id>/basket-credits", methods=["GET"])
@login_required
def student_baskets(student_id):
    ensure_student_access(student_id)
    _get_student(student_id)
    return jsonify({"success": True, "data": student_basket_credits(student_id)})


@student_api.route("/students/<int:student_id>/progress-report", methods=["GET"])
@login_required
def student_progress_report(student_id):
    ensure_student_access(student_id)
    _get_student(student_id)
    return jsonify({"success": True, "data": progress_report(student_id)})


# ==========================================================
# COMPLETION LEDGER
# ==========================================================
@student_api.route("/students/<int:student_id>/completed-courses", methods=["GET"])
@login_required
def list_completed(student_id):
    ensure_student_access(student_id)
    _get_student(student_id)
    rows = (
        CompletedCourse.query
        .filter_by(student_id=student_id)
        .order_by(CompletedCourse.completed_at.desc(), CompletedCourse.id.desc())
        .all()
    )
    return jsonify({"success": True, "data": [r.to_dict() for r in rows]})


@student_api.route("/students/<int:student_id>/completed-courses", methods=["POST"])
@login_required
def add_completed(student_id):
    ensure_student_access(student_id, write=True)
    record = mark_completed(student_id, _course_id(request.get_json(silent=True) or {}))
    return jsonify({"success": True, "data": record.to_dict(), "message": "Course marked as completed"}), 201


@student_api.route("/students/<int:student_id>/completed-courses/<int:course_id>", methods=["DELETE"])
@login_required
def remove_completed(student_id, course_id):
    ensure_student_access(student_id, write=True)
    removed = unmark_completed(student_id, course_id)
    return jsonify({"success": True, "data": {"removed": removed}, "message": "Course completion removed"})


@student_api.route("/courses/completion", methods=["PATCH", "POST"])
@login_required
def toggle_completion():
    data = request.get_json(silent=True) or {}
    course_id = _course_id(data)
    completed = data.get("completed")
    if not isinstance(completed, bool):
        raise ValidationError("Course ID and completion status are required")

    if current_user.is_student:
        student_id = data.get("student_id", current_user.id)
    else:
        student_id = data.get("student_id")
        if student_id is None:
            raise ValidationError("student_id is required")
    student_id = whole_number(student_id, "student_id")
    ensure_student_access(student_id, write=True)

    if completed:
        record = mark_completed(student_id, course_id)
        return jsonify({"success": True, "data": record.to_dict(), "message": "Course marked as completed"})

    removed = unmark_completed(student_id, course_id)
    return jsonify({"success": True, "data": {"removed": removed}, "message": "Course completion removed"})
