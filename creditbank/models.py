# creditbank/models.py
from datetime import datetime, timezone

from creditbank import db


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class Vertical(db.Model):
    __tablename__ = 'verticals'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)

    baskets = db.relationship('Basket', backref='vertical', lazy=True)

    def to_dict(self):
        return {"id": self.id, "code": self.code, "name": self.name}

    def __repr__(self):
        return f"<Vertical {self.code}>"


class Basket(db.Model):
    __tablename__ = 'baskets'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    vertical_id = db.Column(db.Integer, db.ForeignKey('verticals.id'), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "vertical": self.vertical.code if self.vertical else None,
        }

    def __repr__(self):
        return f"<Basket {self.code}>"


class ProgramStructure(db.Model):
    __tablename__ = 'program_structure'
    __table_args__ = (
        db.UniqueConstraint('vertical_id', 'basket_id', 'semester', name='uq_structure_slot'),
        db.CheckConstraint('semester BETWEEN 1 AND 8', name='ck_structure_semester'),
        db.CheckConstraint('recommended_credits >= 0', name='ck_structure_credits'),
    )

    id = db.Column(db.Integer, primary_key=True)
    vertical_id = db.Column(db.Integer, db.ForeignKey('verticals.id'), nullable=False)
    basket_id = db.Column(db.Integer, db.ForeignKey('baskets.id'), nullable=False)
    semester = db.Column(db.Integer, nullable=False)
    recommended_credits = db.Column(db.Integer, nullable=False, default=0)

    vertical = db.relationship('Vertical', lazy='joined')
    basket = db.relationship('Basket', lazy='joined')

    def to_dict(self):
        return {
            "id": self.id,
            "vertical": self.vertical.code,
            "basket": self.basket.code,
            "semester": self.semester,
            "recommended_credits": self.recommended_credits,
        }


class Course(db.Model):
    __tablename__ = 'courses'
    __table_args__ = (
        db.CheckConstraint('credits > 0', name='ck_course_credits'),
        db.CheckConstraint('semester BETWEEN 1 AND 8', name='ck_course_semester'),
    )

    id = db.Column(db.Integer, primary_key=True)
    course_code = db.Column(db.String(30), unique=True, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(20), nullable=False, default='Theory')
    credits = db.Column(db.Integer, nullable=False)
    semester = db.Column(db.Integer, nullable=False)
    degree = db.Column(db.String(20), nullable=False, default='BTech')
    branch = db.Column(db.String(20), nullable=False, default='INFT')
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    vertical_id = db.Column(db.Integer, db.ForeignKey('verticals.id'), nullable=False)
    basket_id = db.Column(db.Integer, db.ForeignKey('baskets.id'), nullable=False)
    vertical = db.relationship('Vertical', lazy='joined')
    basket = db.relationship('Basket', lazy='joined')

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "course_code": self.course_code,
            "title": self.title,
            "type": self.type,
            "credits": self.credits,
            "semester": self.semester,
            "degree": self.degree,
            "branch": self.branch,
            "vertical": self.vertical.code if self.vertical else None,
            "basket": self.basket.code if self.basket else None,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Course {self.course_code}>"


class Student(db.Model):
    __tablename__ = 'students'

    id = db.Column(db.Integer, primary_key=True)
    roll_number = db.Column(db.String(20), unique=True, nullable=False)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    full_name = db.Column(db.String(170), nullable=False)
    legal_name = db.Column(db.String(170), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)

    degree = db.Column(db.String(20), nullable=False)
    branch = db.Column(db.String(20), nullable=False)
    division = db.Column(db.String(10), nullable=True)
    # Set on first semester selection
    semester = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    completions = db.relationship(
        'CompletedCourse', backref='student', lazy=True, cascade='all, delete-orphan'
    )

    def to_dict(self):
        return {
            "id": self.id,
            "roll_number": self.roll_number,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "legal_name": self.legal_name,
            "degree": self.degree,
            "branch": self.branch,
            "division": self.division,
            "semester": self.semester,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Student {self.roll_number}>"


class CompletedCourse(db.Model):
    __tablename__ = 'completed_courses'
    __table_args__ = (
        db.UniqueConstraint('student_id', 'course_id', name='uq_completed_student_course'),
    )

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    course_id = db.Column(db.Integer, db.ForeignKey('courses.id'), nullable=False)
    # Snapshots of the course at completion time
    semester = db.Column(db.Integer, nullable=False)
    credit_awarded = db.Column(db.Integer, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    course = db.relationship('Course', lazy='joined')

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "course_id": self.course_id,
            "semester": self.semester,
            "credit_awarded": self.credit_awarded,
            "completed_at": _iso(self.completed_at),
            "course": self.course.to_dict() if self.course else None,
        }


class AdminRole(db.Model):
    __tablename__ = 'admin_roles'

    id = db.Column(db.Integer, primary_key=True)
    role_code = db.Column(db.String(50), unique=True, nullable=False)
    role_name = db.Column(db.String(100), nullable=False)

    permissions = db.relationship('AdminPermission', backref='role', lazy=True)

    def to_dict(self):
        return {"id": self.id, "role_code": self.role_code, "role_name": self.role_name}


class AdminPermission(db.Model):
    __tablename__ = 'admin_permissions'
    __table_args__ = (
        db.UniqueConstraint('admin_role_id', 'permission_code', name='uq_role_permission'),
    )

    id = db.Column(db.Integer, primary_key=True)
    admin_role_id = db.Column(db.Integer, db.ForeignKey('admin_roles.id'), nullable=False)
    permission_code = db.Column(db.String(50), nullable=False)


class Admin(db.Model):
    __tablename__ = 'admins'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(150), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    full_name = db.Column(db.String(170), nullable=False)

    admin_role_id = db.Column(db.Integer, db.ForeignKey('admin_roles.id'), nullable=False)
    role = db.relationship('AdminRole', lazy='joined')

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    failed_login_attempts = db.Column(db.Integer, nullable=False, default=0)
    locked_until = db.Column(db.DateTime, nullable=True)
    last_login = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def permission_codes(self):
        if not self.role:
            return []
        return sorted(p.permission_code for p in self.role.permissions)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "role": self.role.to_dict() if self.role else None,
            "permissions": self.permission_codes(),
            "is_active": self.is_active,
            "last_login": _iso(self.last_login),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Admin {self.username} ({self.role.role_code if self.role else '?'})>"
