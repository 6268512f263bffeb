from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.exc import IntegrityError

from . import db
from .credits import BASKET_FILTERS, basket_credit_overview
from .errors import DuplicateCourse, NotFound, ValidationError
from .ledger import completed_course_ids
from .models import Basket, Course, ProgramStructure, Vertical
from .program_structure import (
    COURSE_TYPES,
    DEGREES,
    SEMESTERS,
    branch_code,
    get_program_structure,
)
from .security import admin_required

courses = Blueprint('courses', __name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


# ==========================================================
# Input helpers
# ==========================================================
def _clean(s) -> str:
    return '' if s is None else str(s).strip()


def whole_number(value, field):
    """Accept ints and digit strings; bools and fractional values are rejected."""
    if isinstance(value, (bool, float)):
        raise ValidationError(f"{field} must be a whole number")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number")


def parse_flag(value, field='is_active'):
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false")
    return value


def parse_semester(value, field='semester'):
    try:
        semester = whole_number(value, field)
    except ValidationError:
        raise ValidationError(f"{field} must be a number between 1 and 8")
    if semester not in SEMESTERS:
        raise ValidationError(f"{field} must be between 1 and 8")
    return semester


def parse_credits(value):
    credits = whole_number(value, 'credits')
    if credits <= 0:
        raise ValidationError("credits must be greater than 0")
    return credits


def resolve_vertical_basket(vertical_code, basket_code):
    vertical = Vertical.query.filter_by(code=_clean(vertical_code).upper()).first()
    if not vertical:
        raise ValidationError(f"Unknown vertical '{vertical_code}'")
    basket = Basket.query.filter_by(code=_clean(basket_code).upper()).first()
    if not basket:
        raise ValidationError(f"Unknown basket '{basket_code}'")
    if basket.vertical_id != vertical.id:
        raise ValidationError(f"Basket '{basket.code}' does not belong to vertical '{vertical.code}'")
    return vertical, basket


def query_filters(args):
    """Parse catalog filters from query args; blank values are ignored."""
    filters = {}
    for name in BASKET_FILTERS:
        value = _clean(args.get(name))
        if not value:
            continue
        if name == 'semester':
            filters[name] = parse_semester(value)
        elif name == 'type':
            if value not in COURSE_TYPES:
                raise ValidationError(f"type must be one of: {', '.join(COURSE_TYPES)}")
            filters[name] = value
        elif name in ('vertical', 'basket'):
            filters[name] = value.upper()
        else:
            filters[name] = value
    return filters


def generate_course_code(branch, semester, vertical_code):
    """Next free code of the form ``<BRANCH><semester><VERTICAL><nn>``."""
    prefix = f"{branch}{semester}{vertical_code}"
    existing = {
        code for (code,) in
        db.session.query(Course.course_code).filter(Course.course_code.like(f"{prefix}%")).all()
    }
    n = len(existing) + 1
    while f"{prefix}{n:02d}" in existing:
        n += 1
    return f"{prefix}{n:02d}"


def course_fields(data, course=None):
    """Validate a create (``course is None``) or update payload into column values."""
    partial = course is not None
    fields = {}

    if 'title' in data or not partial:
        title = _clean(data.get('title'))
        if not title:
            raise ValidationError("title is required")
        fields['title'] = title

    if 'type' in data or not partial:
        ctype = _clean(data.get('type')) or 'Theory'
        if ctype not in COURSE_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(COURSE_TYPES)}")
        fields['type'] = ctype

    if 'credits' in data or not partial:
        fields['credits'] = parse_credits(data.get('credits'))
    if 'semester' in data or not partial:
        fields['semester'] = parse_semester(data.get('semester'))

    if 'degree' in data or not partial:
        degree = _clean(data.get('degree')) or 'BTech'
        if degree not in DEGREES:
            raise ValidationError(f"degree must be one of: {', '.join(DEGREES)}")
        fields['degree'] = degree

    if 'branch' in data or not partial:
        code = branch_code(_clean(data.get('branch')) or 'INFT')
        if not code:
            raise ValidationError("Unknown branch")
        fields['branch'] = code

    if 'vertical' in data or 'basket' in data or not partial:
        vertical, basket = resolve_vertical_basket(
            data.get('vertical', course.vertical.code if partial else None),
            data.get('basket', course.basket.code if partial else None),
        )
        fields['vertical_id'] = vertical.id
        fields['basket_id'] = basket.id
        fields['_vertical_code'] = vertical.code

    if 'description' in data:
        fields['description'] = _clean(data.get('description')) or None
    if 'course_code' in data and _clean(data.get('course_code')):
        fields['course_code'] = _clean(data.get('course_code')).upper()
    if partial and 'is_active' in data:
        fields['is_active'] = parse_flag(data.get('is_active'))

    return fields


def _get_course(course_id):
    course = db.session.get(Course, course_id)
    if not course:
        raise NotFound(f"Course with ID {course_id} not found")
    return course


def _commit_course(course):
    try:
        db.session.commit()
    except IntegrityError as ie:
        db.session.rollback()
        raise DuplicateCourse(f"Course with code {course.course_code} already exists") from ie


# ==========================================================
# Catalog reads
# ==========================================================
@courses.route('/courses', methods=['GET'])
@login_required
def list_courses():
    filters = query_filters(request.args)
    try:
        page = max(int(request.args.get('page', 1)), 1)
        page_size = min(max(int(request.args.get('page_size', DEFAULT_PAGE_SIZE)), 1), MAX_PAGE_SIZE)
    except ValueError:
        raise ValidationError("page and page_size must be numbers")

    query = Course.query.filter(Course.is_active.is_(True))
    if 'semester' in filters:
        query = query.filter(Course.semester == filters['semester'])
    if 'type' in filters:
        query = query.filter(Course.type == filters['type'])
    if 'vertical' in filters:
        query = query.join(Vertical, Course.vertical_id == Vertical.id).filter(Vertical.code == filters['vertical'])
    if 'basket' in filters:
        query = query.join(Basket, Course.basket_id == Basket.id).filter(Basket.code == filters['basket'])
    if 'degree' in filters:
        query = query.filter(Course.degree == filters['degree'])
    if 'branch' in filters:
        query = query.filter(Course.branch == filters['branch'])

    total = query.count()
    items = (
        query.order_by(Course.semester, Course.course_code)
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    done = completed_course_ids(current_user.id) if current_user.is_student else set()
    data = []
    for course in items:
        row = course.to_dict()
        if current_user.is_student:
            row['completed'] = course.id in done
        data.append(row)

    total_pages = (total + page_size - 1) // page_size
    return jsonify({
        'success': True,
        'data': {
            'courses': data,
            'total_count': total,
            'current_page': page,
            'page_size': page_size,
            'total_pages': total_pages,
            'has_next_page': page < total_pages,
            'has_previous_page': page > 1,
        },
    })


@courses.route('/courses/<int:course_id>', methods=['GET'])
@login_required
def get_course(course_id):
    return jsonify({'success': True, 'data': _get_course(course_id).to_dict()})


# ==========================================================
# Catalog writes (admin)
# ==========================================================
@courses.route('/courses', methods=['POST'])
@admin_required(permission='manage_courses')
def create_course():
    data = request.get_json(silent=True) or {}
    fields = course_fields(data)
    vertical_code = fields.pop('_vertical_code')
    if 'course_code' not in fields:
        fields['course_code'] = generate_course_code(fields['branch'], fields['semester'], vertical_code)

    course = Course(**fields)
    db.session.add(course)
    _commit_course(course)
    current_app.logger.info("Course %s created by admin %s", course.course_code, current_user.id)
    return jsonify({'success': True, 'data': course.to_dict(), 'message': 'Course created successfully'}), 201


@courses.route('/courses/<int:course_id>', methods=['PUT'])
@admin_required(permission='manage_courses')
def update_course(course_id):
    course = _get_course(course_id)
    fields = course_fields(request.get_json(silent=True) or {}, course=course)
    fields.pop('_vertical_code', None)
    for name, value in fields.items():
        setattr(course, name, value)
    _commit_course(course)
    current_app.logger.info("Course %s updated by admin %s", course.course_code, current_user.id)
    return jsonify({'success': True, 'data': course.to_dict(), 'message': 'Course updated successfully'})


@courses.route('/courses/<int:course_id>', methods=['DELETE'])
@admin_required(permission='manage_courses')
def delete_course(course_id):
    """Deactivate; completions keep pointing at the row."""
    course = _get_course(course_id)
    course.is_active = False
    db.session.commit()
    current_app.logger.info("Course %s deactivated by admin %s", course.course_code, current_user.id)
    return jsonify({'success': True, 'message': 'Course deactivated successfully'})


# ==========================================================
# Aggregates
# ==========================================================
@courses.route('/basket-credits', methods=['GET'])
@login_required
def basket_credits():
    filters = query_filters(request.args)
    rows, source = basket_credit_overview(filters)
    return jsonify({
        'success': True,
        'data': {
            'baskets': rows,
            'total_credits': sum(r['total_credits'] for r in rows),
            'filters': filters,
            'source': source,
        },
    })


@courses.route('/program-structure', methods=['GET'])
@login_required
def program_structure():
    rows = (
        ProgramStructure.query
        .order_by(ProgramStructure.semester, ProgramStructure.vertical_id)
        .all()
    )
    verticals = [v.code for v in Vertical.query.order_by(Vertical.id).all()]
    store = get_program_structure()
    return jsonify({
        'success': True,
        'data': {
            'verticals': [v.to_dict() for v in Vertical.query.order_by(Vertical.id).all()],
            'structure': [r.to_dict() for r in rows],
            'semester_totals': store.semester_totals(verticals),
            'vertical_totals': store.vertical_requirements(verticals),
            'source': store.source,
        },
    })


@courses.route('/program-structure/recommended/<vertical>/<int:semester>', methods=['GET'])
@login_required
def recommended_credits(vertical, semester):
    semester = parse_semester(semester)
    basket = _clean(request.args.get('basket')).upper() or None
    store = get_program_structure()
    credits = store.recommended_credits(vertical.upper(), semester, basket=basket)
    return jsonify({
        'success': True,
        'data': {
            'vertical': vertical.upper(),
            'basket': basket,
            'semester': semester,
            'recommended_credits': credits,
        },
        'source': store.source,
    })
