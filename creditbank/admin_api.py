from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash

from . import db
from .admin_auth import SUPER_ROLE, build_admin
from .auth import (
    MIN_PASSWORD_LENGTH,
    ROLL_NUMBER_RE,
    full_name_of,
    password_field,
    validate_student_fields,
)
from .courses import parse_flag, parse_semester, resolve_vertical_basket, whole_number
from .errors import AccessDenied, Conflict, NotFound, ValidationError
from .models import (
    Admin,
    AdminRole,
    Basket,
    CompletedCourse,
    Course,
    ProgramStructure,
    Student,
    Vertical,
)
from .program_structure import get_program_structure
from .security import admin_required

admin_api = Blueprint("admin_api", __name__)


def _clean(s) -> str:
    return '' if s is None else str(s).strip()


def _payload():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _commit_unique(message):
    try:
        db.session.commit()
    except IntegrityError as ie:
        db.session.rollback()
        raise Conflict(message) from ie


# ==========================================================
# STUDENTS
# ==========================================================
@admin_api.route("/students", methods=["GET"])
@admin_required(permission="view_students")
def list_students():
    query = Student.query
    for name in ("degree", "branch", "division"):
        value = _clean(request.args.get(name))
        if value:
            query = query.filter(getattr(Student, name) == value)
    if request.args.get("semester"):
        query = query.filter(Student.semester == parse_semester(request.args["semester"]))
    active = _clean(request.args.get("is_active")).lower()
    if active in ("true", "false"):
        query = query.filter(Student.is_active.is_(active == "true"))

    students = query.order_by(Student.created_at.desc(), Student.id.desc()).all()
    return jsonify({
        "success": True,
        "data": {
            "students": [s.to_dict() for s in students],
            "stats": {
                "total": Student.query.count(),
                "active": Student.query.filter_by(is_active=True).count(),
            },
        },
    })


@admin_api.route("/students/<int:student_id>", methods=["GET"])
@admin_required(permission="view_students")
def get_student(student_id):
    student = db.session.get(Student, student_id)
    if not student:
        raise NotFound(f"Student {student_id} not found")
    return jsonify({"success": True, "data": student.to_dict()})


@admin_api.route("/students", methods=["POST"])
@admin_required(permission="manage_students")
def create_student():
    data = _payload()
    roll_number = _clean(data.get("roll_number")).upper()
    password = password_field(data)
    if not ROLL_NUMBER_RE.match(roll_number):
        raise ValidationError("Roll number must be 4-20 letters or digits.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

    fields = validate_student_fields(data)
    semester = parse_semester(data["semester"]) if data.get("semester") is not None else None
    student = Student(
        roll_number=roll_number,
        full_name=full_name_of(fields["first_name"], fields["last_name"]),
        password_hash=generate_password_hash(password),
        semester=semester,
        is_active=True,
        **fields,
    )
    db.session.add(student)
    _commit_unique("Student with this roll number already exists")
    current_app.logger.info("Admin %s created student %s", current_user.id, student.roll_number)
    return jsonify({"success": True, "data": student.to_dict(), "message": "Student created successfully"}), 201


@admin_api.route("/students/<int:student_id>", methods=["PUT"])
@admin_required(permission="manage_students")
def update_student(student_id):
    student = db.session.get(Student, student_id)
    if not student:
        raise NotFound(f"Student {student_id} not found")
    data = _payload()

    fields = validate_student_fields(data, partial=True)
    if any(name in fields and not fields[name] for name in ("first_name", "last_name")):
        raise ValidationError("First name and last name cannot be blank.")
    for name, value in fields.items():
        setattr(student, name, value)
    if "semester" in data:
        student.semester = parse_semester(data["semester"]) if data["semester"] is not None else None
    if "is_active" in data:
        student.is_active = parse_flag(data["is_active"])
    password = password_field(data)
    if password:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        student.password_hash = generate_password_hash(password)
    student.full_name = full_name_of(student.first_name, student.last_name)

    db.session.commit()
    return jsonify({"success": True, "data": student.to_dict(), "message": "Student updated successfully"})


@admin_api.route("/students/<int:student_id>", methods=["DELETE"])
@admin_required(permission="manage_students")
def delete_student(student_id):
    """Deactivate by default; ``?hard=true`` removes the student and their ledger rows."""
    student = db.session.get(Student, student_id)
    if not student:
        raise NotFound(f"Student {student_id} not found")

    if _clean(request.args.get("hard")).lower() in ("1", "true", "yes"):
        if not current_user.has_role(SUPER_ROLE):
            raise AccessDenied(f"Role '{SUPER_ROLE}' required for permanent deletion")
        db.session.delete(student)
        db.session.commit()
        current_app.logger.warning("Admin %s permanently deleted student %s", current_user.id, student_id)
        return jsonify({"success": True, "message": "Student deleted permanently"})

    student.is_active = False
    db.session.commit()
    current_app.logger.info("Admin %s deactivated student %s", current_user.id, student_id)
    return jsonify({"success": True, "message": "Student deactivated successfully"})


# ==========================================================
# ADMIN USERS
# ==========================================================
@admin_api.route("/users", methods=["GET"])
@admin_required(permission="manage_admins")
def list_admins():
    admins = Admin.query.order_by(Admin.created_at.desc(), Admin.id.desc()).all()
    roles = AdminRole.query.order_by(AdminRole.id).all()
    return jsonify({
        "success": True,
        "data": {"admins": [a.to_dict() for a in admins], "roles": [r.to_dict() for r in roles]},
    })


@admin_api.route("/users", methods=["POST"])
@admin_required(permission="manage_admins")
def create_admin():
    data = _payload()
    role = AdminRole.query.filter_by(role_code=_clean(data.get("role"))).first()
    if not role:
        raise ValidationError("Invalid role specified")
    admin = build_admin(data, role)
    db.session.add(admin)
    _commit_unique("An administrator with this username or email already exists")
    current_app.logger.info("Admin %s created admin %s (%s)", current_user.id, admin.username, role.role_code)
    return jsonify({"success": True, "data": admin.to_dict(), "message": "Admin user created successfully"}), 201


@admin_api.route("/users/<int:admin_id>", methods=["PATCH"])
@admin_required(permission="manage_admins")
def update_admin(admin_id):
    admin = db.session.get(Admin, admin_id)
    if not admin:
        raise NotFound(f"Admin {admin_id} not found")
    data = _payload()

    if "is_active" in data:
        is_active = parse_flag(data["is_active"])
        if admin.id == current_user.id and not is_active:
            raise ValidationError("You cannot deactivate your own account")
        admin.is_active = is_active
    if data.get("role"):
        role = AdminRole.query.filter_by(role_code=_clean(data["role"])).first()
        if not role:
            raise ValidationError("Invalid role specified")
        admin.admin_role_id = role.id
    if data.get("unlock"):
        admin.failed_login_attempts = 0
        admin.locked_until = None

    db.session.commit()
    return jsonify({"success": True, "data": admin.to_dict(), "message": "Admin user updated successfully"})


# ==========================================================
# PROGRAM STRUCTURE
# ==========================================================
@admin_api.route("/program-structure", methods=["PUT"])
@admin_required(permission="manage_programs")
def upsert_program_structure():
    data = _payload()
    vertical, basket = resolve_vertical_basket(data.get("vertical"), data.get("basket"))
    semester = parse_semester(data.get("semester"))
    credits = whole_number(data.get("recommended_credits"), "recommended_credits")
    if credits < 0:
        raise ValidationError("recommended_credits cannot be negative")

    row = ProgramStructure.query.filter_by(
        vertical_id=vertical.id, basket_id=basket.id, semester=semester
    ).first()
    if row is None:
        row = ProgramStructure(vertical_id=vertical.id, basket_id=basket.id, semester=semester)
        db.session.add(row)
    row.recommended_credits = credits
    db.session.commit()

    get_program_structure().invalidate()
    current_app.logger.info("Program structure %s/%s sem %s set to %s",
                            vertical.code, basket.code, semester, credits)
    return jsonify({"success": True, "data": row.to_dict(), "message": "Program structure updated"})


@admin_api.route("/verticals", methods=["POST"])
@admin_required(permission="manage_curriculum")
def create_vertical():
    data = _payload()
    code = _clean(data.get("code")).upper()
    name = _clean(data.get("name"))
    if not code or not name:
        raise ValidationError("code and name are required")
    vertical = Vertical(code=code, name=name)
    db.session.add(vertical)
    _commit_unique(f"Vertical {code} already exists")
    return jsonify({"success": True, "data": vertical.to_dict()}), 201


@admin_api.route("/baskets", methods=["POST"])
@admin_required(permission="manage_curriculum")
def create_basket():
    data = _payload()
    code = _clean(data.get("code")).upper()
    name = _clean(data.get("name"))
    vertical = Vertical.query.filter_by(code=_clean(data.get("vertical")).upper()).first()
    if not code or not name:
        raise ValidationError("code and name are required")
    if not vertical:
        raise ValidationError(f"Unknown vertical '{data.get('vertical')}'")
    basket = Basket(code=code, name=name, vertical_id=vertical.id)
    db.session.add(basket)
    _commit_unique(f"Basket {code} already exists")
    return jsonify({"success": True, "data": basket.to_dict()}), 201


# ==========================================================
# DASHBOARD STATS
# ==========================================================
@admin_api.route("/stats", methods=["GET"])
@admin_required(permission="view_reports")
def stats():
    active_students = Student.query.filter_by(is_active=True).count()
    earned = (
        db.session.query(func.coalesce(func.sum(CompletedCourse.credit_awarded), 0))
        .join(Student, CompletedCourse.student_id == Student.id)
        .filter(Student.is_active.is_(True))
        .scalar()
    )
    by_semester = dict(
        db.session.query(Course.semester, func.count(Course.id))
        .filter(Course.is_active.is_(True))
        .group_by(Course.semester)
        .all()
    )
    recent = Student.query.order_by(Student.created_at.desc(), Student.id.desc()).limit(5).all()

    return jsonify({
        "success": True,
        "data": {
            "overview": {
                "total_students": Student.query.count(),
                "active_students": active_students,
                "total_courses": Course.query.count(),
                "active_courses": Course.query.filter_by(is_active=True).count(),
                "total_completions": CompletedCourse.query.count(),
            },
            "recent_activity": {
                "new_students": [
                    {k: s.to_dict()[k] for k in ("id", "full_name", "roll_number", "degree", "branch", "created_at")}
                    for s in recent
                ],
                "course_by_semester": by_semester,
                "average_credits": round(int(earned) / active_students, 2) if active_students else 0,
            },
        },
    })


# ==========================================================
# REPORTS
# ==========================================================
REPORT_TYPES = {
    "student-progress": "Student Progress Report",
    "course-analytics": "Course Analytics",
}


def student_progress_report():
    """Active students ranked by credits earned."""
    earned = func.coalesce(func.sum(CompletedCourse.credit_awarded), 0)
    rows = (
        db.session.query(Student, earned.label("credits_earned"), func.count(CompletedCourse.id))
        .outerjoin(CompletedCourse, CompletedCourse.student_id == Student.id)
        .filter(Student.is_active.is_(True))
        .group_by(Student.id)
        .order_by(earned.desc(), Student.roll_number)
        .all()
    )
    students = [
        {
            "id": student.id,
            "roll_number": student.roll_number,
            "full_name": student.full_name,
            "degree": student.degree,
            "branch": student.branch,
            "semester": student.semester,
            "credits_earned": int(credits),
            "courses_completed": completed,
        }
        for student, credits, completed in rows
    ]
    total_credits = sum(s["credits_earned"] for s in students)
    return {
        "type": "student_progress",
        "students": students,
        "summary": {
            "total_students": len(students),
            "average_credits": round(total_credits / len(students), 2) if students else 0,
        },
    }


def course_analytics_report():
    """Offered credits and course counts per semester over the active catalog."""
    rows = (
        db.session.query(Course.semester, func.count(Course.id), func.sum(Course.credits))
        .filter(Course.is_active.is_(True))
        .group_by(Course.semester)
        .order_by(Course.semester)
        .all()
    )
    analytics = [
        {"semester": semester, "course_count": count, "total_credits": int(credits or 0)}
        for semester, count, credits in rows
    ]
    return {
        "type": "course_analytics",
        "analytics": analytics,
        "summary": {
            "total_courses": Course.query.count(),
            "active_courses": Course.query.filter_by(is_active=True).count(),
            "total_credits_offered": sum(a["total_credits"] for a in analytics),
        },
    }


@admin_api.route("/reports", methods=["GET"])
@admin_required(permission="view_reports")
def reports():
    report_type = _clean(request.args.get("type"))
    if report_type == "student-progress":
        data = student_progress_report()
    elif report_type == "course-analytics":
        data = course_analytics_report()
    elif not report_type:
        data = {
            "type": "overview",
            "summary": {
                "active_students": Student.query.filter_by(is_active=True).count(),
                "active_courses": Course.query.filter_by(is_active=True).count(),
                "total_completions": CompletedCourse.query.count(),
            },
            "available_reports": [{"type": t, "name": n} for t, n in REPORT_TYPES.items()],
        }
    else:
        raise ValidationError(f"type must be one of: {', '.join(REPORT_TYPES)}")
    return jsonify({"success": True, "data": data})
