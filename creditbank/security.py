"""
Caller resolution for both account kinds.

Tokens are HS256 JWTs carrying ``id`` and ``type``. They are accepted from an
``Authorization: Bearer`` header or from the auth cookie; ``resolve_caller``
hides which one was used. Cookie-borne tokens must pass the CSRF check on
unsafe methods.
"""
import logging
from datetime import timedelta
from functools import wraps

from flask import current_app, request
from flask_login import UserMixin, current_user, login_required
from jose import ExpiredSignatureError, JWTError, jwt

from . import csrf, db
from .errors import (
    AccessDenied,
    InvalidOrExpiredToken,
    MissingToken,
    WrongIdentityType,
)
from .models import Admin, Student, utcnow

logger = logging.getLogger(__name__)

STUDENT = 'student'
ADMIN = 'admin'
UNSAFE_METHODS = ('POST', 'PUT', 'PATCH', 'DELETE')


class Identity(UserMixin):
    """The resolved caller; wraps either a Student or an Admin row."""

    def __init__(self, kind, account, role_code=None, permissions=()):
        self.kind = kind
        self.account = account
        self.role_code = role_code
        self.permissions = frozenset(permissions)

    @property
    def id(self):
        return self.account.id

    @property
    def is_student(self):
        return self.kind == STUDENT

    @property
    def is_admin(self):
        return self.kind == ADMIN

    @property
    def is_active(self):
        return bool(self.account.is_active)

    def get_id(self):
        return f"{self.kind}:{self.account.id}"

    def has_role(self, code):
        return self.is_admin and self.role_code == code

    def has_permission(self, code):
        return self.is_admin and code in self.permissions

    def to_dict(self):
        data = {"type": self.kind, "account": self.account.to_dict()}
        if self.is_admin:
            data["role"] = self.role_code
            data["permissions"] = sorted(self.permissions)
        return data


# ==========================================================
# Tokens
# ==========================================================
def issue_token(kind, account):
    cfg = current_app.config
    if kind == STUDENT:
        ttl = timedelta(days=cfg["STUDENT_TOKEN_TTL_DAYS"])
        extra = {"roll_number": account.roll_number}
    else:
        ttl = timedelta(hours=cfg["ADMIN_TOKEN_TTL_HOURS"])
        extra = {"username": account.username, "role": account.role.role_code}
    now = utcnow()
    claims = {"id": account.id, "type": kind, "iat": now, "exp": now + ttl}
    claims.update(extra)
    return jwt.encode(claims, cfg["JWT_SECRET_KEY"], algorithm=cfg["JWT_ALGORITHM"])


def decode_token(token):
    cfg = current_app.config
    try:
        claims = jwt.decode(token, cfg["JWT_SECRET_KEY"], algorithms=[cfg["JWT_ALGORITHM"]])
    except ExpiredSignatureError:
        raise InvalidOrExpiredToken("Authentication token has expired")
    except JWTError as err:
        logger.debug("Rejected token: %s", err)
        raise InvalidOrExpiredToken()
    if claims.get("type") not in (STUDENT, ADMIN) or not isinstance(claims.get("id"), int):
        raise InvalidOrExpiredToken()
    return claims


def _token_from_request(req):
    header = req.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        token = header[7:].strip()
        if token:
            return token, "header"
    token = req.cookies.get(current_app.config["AUTH_COOKIE_NAME"])
    if token:
        return token, "cookie"
    return None, None


def _check_cookie_csrf(req):
    if req.method in UNSAFE_METHODS and current_app.config.get("WTF_CSRF_ENABLED", True):
        csrf.protect()


def resolve_caller(req):
    """Return the Identity behind ``req`` or raise an AuthError."""
    token, transport = _token_from_request(req)
    if not token:
        raise MissingToken()
    claims = decode_token(token)

    if claims["type"] == STUDENT:
        student = db.session.get(Student, claims["id"])
        if not student or not student.is_active:
            raise InvalidOrExpiredToken()
        identity = Identity(STUDENT, student)
    else:
        admin = db.session.get(Admin, claims["id"])
        if not admin or not admin.is_active:
            raise InvalidOrExpiredToken()
        identity = Identity(ADMIN, admin, admin.role.role_code, admin.permission_codes())

    if transport == "cookie":
        _check_cookie_csrf(req)
    return identity


def load_identity(req):
    """Flask-Login request loader: anonymous when no token is presented."""
    try:
        return resolve_caller(req)
    except MissingToken:
        return None


def reject_anonymous():
    raise MissingToken()


def set_auth_cookie(response, token, max_age):
    response.set_cookie(
        current_app.config["AUTH_COOKIE_NAME"],
        token,
        max_age=max_age,
        httponly=True,
        secure=current_app.config["AUTH_COOKIE_SECURE"],
        samesite="Strict",
        path="/",
    )
    return response


def clear_auth_cookie(response):
    response.delete_cookie(current_app.config["AUTH_COOKIE_NAME"], path="/")
    return response


# ==========================================================
# Guards
# ==========================================================
def student_required(view):
    @wraps(view)
    @login_required
    def wrapped(*args, **kwargs):
        if not current_user.is_student:
            raise WrongIdentityType("Student account required")
        return view(*args, **kwargs)
    return wrapped


def admin_required(permission=None, role=None):
    def decorator(view):
        @wraps(view)
        @login_required
        def wrapped(*args, **kwargs):
            if not current_user.is_admin:
                raise WrongIdentityType("Administrator account required")
            if role and not current_user.has_role(role):
                raise AccessDenied(f"Role '{role}' required")
            if permission and not current_user.has_permission(permission):
                raise AccessDenied(f"Permission '{permission}' required")
            return view(*args, **kwargs)
        return wrapped
    return decorator


def ensure_student_access(student_id, write=False):
    """Students reach only their own records; admins need the matching permission."""
    if current_user.is_student:
        if current_user.id != student_id:
            raise AccessDenied()
        return
    needed = 'manage_students' if write else 'view_students'
    if not current_user.has_permission(needed):
        raise AccessDenied(f"Permission '{needed}' required")
