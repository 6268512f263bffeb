from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from werkzeug.security import check_password_hash, generate_password_hash

from . import db
from .auth import password_field
from .errors import (
    AccessDenied,
    AccountLocked,
    Conflict,
    InvalidCredentials,
    NotFound,
    ValidationError,
)
from .models import Admin, AdminRole, utcnow
from .security import ADMIN, admin_required, clear_auth_cookie, issue_token, set_auth_cookie

admin_auth = Blueprint('admin_auth', __name__)

SUPER_ROLE = 'university_admin'


def _clean(s) -> str:
    return '' if s is None else str(s).strip()


def _payload():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def authenticate_admin(username, password, now=None):
    """Check credentials with lockout bookkeeping.

    ``MAX_FAILED_LOGINS`` consecutive failures lock the account for
    ``ACCOUNT_LOCK_MINUTES``; any later attempt inside the window fails with
    AccountLocked regardless of the password. A success resets the counter.
    """
    now = now or utcnow()
    admin = Admin.query.filter_by(username=username, is_active=True).first()
    if not admin:
        raise InvalidCredentials()

    if admin.locked_until and admin.locked_until > now:
        raise AccountLocked()

    if not check_password_hash(admin.password_hash, password):
        attempts = (admin.failed_login_attempts or 0) + 1
        limit = current_app.config['MAX_FAILED_LOGINS']
        admin.failed_login_attempts = attempts
        if attempts >= limit:
            admin.locked_until = now + timedelta(minutes=current_app.config['ACCOUNT_LOCK_MINUTES'])
        db.session.commit()
        if attempts >= limit:
            current_app.logger.warning("Admin %s locked after %d failed logins", username, attempts)
            raise InvalidCredentials(
                f"Too many failed attempts. Account locked for "
                f"{current_app.config['ACCOUNT_LOCK_MINUTES']} minutes."
            )
        raise InvalidCredentials()

    admin.failed_login_attempts = 0
    admin.locked_until = None
    admin.last_login = now
    db.session.commit()
    return admin


def _token_response(admin, status=200, message='Login successful'):
    token = issue_token(ADMIN, admin)
    resp = jsonify({
        'success': True,
        'message': message,
        'data': {'token': token, 'admin': admin.to_dict()},
    })
    set_auth_cookie(resp, token, current_app.config['ADMIN_TOKEN_TTL_HOURS'] * 3600)
    return resp, status


@admin_auth.route('/login', methods=['POST'])
def login():
    data = _payload()
    username = _clean(data.get('username'))
    password = password_field(data)
    if not username or not password:
        raise ValidationError('Username and password are required')

    admin = authenticate_admin(username, password)
    current_app.logger.info("Admin %s logged in", admin.username)
    return _token_response(admin)


@admin_auth.route('/logout', methods=['POST'])
def logout():
    return clear_auth_cookie(jsonify({'success': True, 'message': 'You have been logged out.'}))


@admin_auth.route('/check', methods=['GET'])
@admin_required()
def check():
    return jsonify({'success': True, 'data': current_user.to_dict()})


@admin_auth.route('/bootstrap', methods=['POST'])
def bootstrap():
    """Create the first university admin, guarded by the bootstrap passcode."""
    passcode = current_app.config.get('ADMIN_BOOTSTRAP_PASSCODE')
    if not passcode:
        raise NotFound('Bootstrap is disabled')

    data = _payload()
    if data.get('passcode') != passcode:
        raise AccessDenied('Invalid bootstrap passcode')
    if Admin.query.first() is not None:
        raise Conflict('An administrator already exists')

    role = AdminRole.query.filter_by(role_code=SUPER_ROLE).first()
    if not role:
        raise NotFound('Admin roles are not seeded; run `flask seed` first')

    admin = build_admin(data, role)
    db.session.add(admin)
    db.session.commit()
    current_app.logger.info("Bootstrapped administrator %s", admin.username)
    return _token_response(admin, status=201, message='Administrator created')


def build_admin(data, role):
    username = _clean(data.get('username'))
    email = _clean(data.get('email')).lower()
    password = password_field(data)
    first_name = _clean(data.get('first_name'))
    last_name = _clean(data.get('last_name'))

    if not all([username, email, password, first_name, last_name]):
        raise ValidationError('All fields are required')
    if '@' not in email:
        raise ValidationError('A valid email is required')
    if len(password) < 8:
        raise ValidationError('Admin passwords must be at least 8 characters')

    return Admin(
        username=username,
        email=email,
        password_hash=generate_password_hash(password),
        first_name=first_name,
        last_name=last_name,
        full_name=f"{first_name} {last_name}",
        admin_role_id=role.id,
        is_active=True,
    )
