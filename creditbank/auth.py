import re

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from flask_wtf.csrf import generate_csrf
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from . import db
from .errors import AccessDenied, Conflict, InvalidCredentials, ValidationError
from .models import Student
from .program_structure import BRANCHES, DEGREES, branch_code
from .security import STUDENT, clear_auth_cookie, issue_token, set_auth_cookie

auth = Blueprint('auth', __name__)

# --------------------------
# Regex patterns
# --------------------------
ROLL_NUMBER_RE = re.compile(r'^[A-Za-z0-9]{4,20}$')
DIVISION_RE = re.compile(r'^[A-Za-z]{1,2}$')
MIN_PASSWORD_LENGTH = 6


def _clean(s) -> str:
    return '' if s is None else str(s).strip()


def _roll(s) -> str:
    return _clean(s).upper()


def _payload():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def password_field(data, key='password'):
    """The raw password from a JSON body; absent reads as empty."""
    value = data.get(key)
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValidationError('Password must be a string')
    return value


def validate_student_fields(data, partial=False):
    """Normalise student profile fields; raise ValidationError on bad input."""
    fields = {}
    for name in ('first_name', 'last_name', 'legal_name', 'division'):
        if name in data:
            fields[name] = _clean(data.get(name)) or None

    if not partial:
        for name in ('first_name', 'last_name'):
            if not fields.get(name):
                raise ValidationError('First name and last name are required.')

    if fields.get('division') and not DIVISION_RE.match(fields['division']):
        raise ValidationError('Division must be one or two letters.')
    if fields.get('division'):
        fields['division'] = fields['division'].upper()

    if 'degree' in data or not partial:
        degree = _clean(data.get('degree'))
        if degree not in DEGREES:
            raise ValidationError(f"Degree must be one of: {', '.join(DEGREES)}")
        fields['degree'] = degree

    if 'branch' in data or not partial:
        code = branch_code(_clean(data.get('branch')))
        if not code:
            raise ValidationError(f"Branch must be one of: {', '.join(BRANCHES)}")
        fields['branch'] = code

    return fields


def full_name_of(first_name, last_name):
    return f"{first_name} {last_name}".strip()


def _login_response(student, status=200, message='Login successful'):
    token = issue_token(STUDENT, student)
    resp = jsonify({
        'success': True,
        'message': message,
        'data': {'token': token, 'student': student.to_dict()},
    })
    max_age = current_app.config['STUDENT_TOKEN_TTL_DAYS'] * 24 * 3600
    set_auth_cookie(resp, token, max_age)
    return resp, status


@auth.route('/signup', methods=['POST'])
def signup():
    data = _payload()
    roll_number = _roll(data.get('roll_number'))
    password = password_field(data)

    if not ROLL_NUMBER_RE.match(roll_number):
        raise ValidationError('Roll number must be 4-20 letters or digits.')
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')

    fields = validate_student_fields(data)

    student = Student(
        roll_number=roll_number,
        full_name=_clean(data.get('full_name')) or full_name_of(fields['first_name'], fields['last_name']),
        password_hash=generate_password_hash(password),
        semester=None,
        **fields,
    )
    db.session.add(student)
    try:
        db.session.commit()
    except IntegrityError as ie:
        db.session.rollback()
        if 'roll_number' in str(ie.orig).lower() or 'unique' in str(ie.orig).lower():
            raise Conflict('Student with this roll number already exists') from ie
        raise

    current_app.logger.info("Student %s signed up", student.roll_number)
    return _login_response(student, status=201, message='Account created successfully')


@auth.route('/login', methods=['POST'])
def login():
    data = _payload()
    roll_number = _roll(data.get('roll_number'))
    password = password_field(data)
    if not roll_number or not password:
        raise ValidationError('Roll number and password are required')

    student = Student.query.filter_by(roll_number=roll_number).first()
    if not student or not check_password_hash(student.password_hash, password):
        raise InvalidCredentials()
    if not student.is_active:
        raise AccessDenied('This account has been deactivated')

    return _login_response(student)


@auth.route('/logout', methods=['POST'])
def logout():
    resp = jsonify({'success': True, 'message': 'You have been logged out.'})
    return clear_auth_cookie(resp)


@auth.route('/check', methods=['GET'])
@login_required
def check():
    return jsonify({'success': True, 'data': current_user.to_dict()})


@auth.route('/csrf', methods=['GET'])
def csrf_token():
    return jsonify({'success': True, 'data': {'csrf_token': generate_csrf()}})
