"""
Credit bank - test configuration and fixtures.

The app runs on in-memory SQLite. Fixtures never leave an app context pushed
while the test client is in use, so each request resolves its caller afresh.
"""
import pytest
from werkzeug.security import generate_password_hash

from creditbank import create_app, db
from creditbank.models import Admin, AdminRole, Basket, Course, Student, Vertical
from creditbank.security import ADMIN, STUDENT, issue_token
from creditbank.seed import seed_reference_data

JWT_SECRET = 'test-jwt-secret-key-for-testing'
BOOTSTRAP_PASSCODE = 'let-me-in'
STUDENT_PASSWORD = 'secret12'
ADMIN_PASSWORD = 'adminpass123'


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret-key-for-testing-only',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'JWT_SECRET_KEY': JWT_SECRET,
        'ADMIN_BOOTSTRAP_PASSCODE': BOOTSTRAP_PASSCODE,
        'LOG_LEVEL': 'WARNING',
    })
    with app.app_context():
        seed_reference_data()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_student(app):
    """Create a student and return its id."""
    counter = {'n': 0}

    def _make(semester=3, roll_number=None, is_active=True, **extra):
        counter['n'] += 1
        fields = {
            'first_name': 'Asha',
            'last_name': 'Rao',
            'degree': 'BTech',
            'branch': 'INFT',
            'division': 'A',
        }
        fields.update(extra)
        with app.app_context():
            student = Student(
                roll_number=roll_number or f"STU{1000 + counter['n']}",
                full_name=f"{fields['first_name']} {fields['last_name']}",
                password_hash=generate_password_hash(STUDENT_PASSWORD),
                semester=semester,
                is_active=is_active,
                **fields,
            )
            db.session.add(student)
            db.session.commit()
            return student.id
    return _make


@pytest.fixture
def make_admin(app):
    """Create an admin with the given role code and return its id."""
    counter = {'n': 0}

    def _make(role='university_admin', username=None, is_active=True):
        counter['n'] += 1
        username = username or f"admin{counter['n']}"
        with app.app_context():
            role_row = AdminRole.query.filter_by(role_code=role).one()
            admin = Admin(
                username=username,
                email=f"{username}@example.edu",
                password_hash=generate_password_hash(ADMIN_PASSWORD),
                first_name='Site',
                last_name='Admin',
                full_name='Site Admin',
                admin_role_id=role_row.id,
                is_active=is_active,
            )
            db.session.add(admin)
            db.session.commit()
            return admin.id
    return _make


@pytest.fixture
def make_course(app):
    """Create a course directly in the store and return its id."""
    counter = {'n': 0}

    def _make(semester=3, credits=4, vertical='PCC', basket=None, course_type='Theory',
              is_active=True, course_code=None, branch='INFT'):
        counter['n'] += 1
        with app.app_context():
            vertical_row = Vertical.query.filter_by(code=vertical).one()
            basket_row = Basket.query.filter_by(code=basket or vertical).one()
            course = Course(
                course_code=course_code or f"T{semester}{vertical}{counter['n']:03d}",
                title=f"Test course {counter['n']}",
                type=course_type,
                credits=credits,
                semester=semester,
                degree='BTech',
                branch=branch,
                vertical_id=vertical_row.id,
                basket_id=basket_row.id,
                is_active=is_active,
            )
            db.session.add(course)
            db.session.commit()
            return course.id
    return _make


@pytest.fixture
def token_for(app):
    def _token(kind, account_id):
        model = Student if kind == STUDENT else Admin
        with app.app_context():
            return issue_token(kind, db.session.get(model, account_id))
    return _token


@pytest.fixture
def student_headers(token_for):
    def _headers(student_id):
        return {'Authorization': f"Bearer {token_for(STUDENT, student_id)}"}
    return _headers


@pytest.fixture
def admin_headers(token_for):
    def _headers(admin_id):
        return {'Authorization': f"Bearer {token_for(ADMIN, admin_id)}"}
    return _headers
