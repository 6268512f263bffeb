"""Add unique constraints to credit tracking tables"""

from alembic import op
import sqlalchemy as sa


revision = '7c4d2a9e51b3'
down_revision = None
branch_labels = None
depends_on = None

CONSTRAINTS = [
    ('uq_completed_student_course', 'completed_courses', 'student_id, course_id'),
    ('uq_courses_code', 'courses', 'course_code'),
    ('uq_students_roll', 'students', 'roll_number'),
    ('uq_admins_username', 'admins', 'username'),
    ('uq_admins_email', 'admins', 'email'),
    ('uq_structure_slot', 'program_structure', 'vertical_id, basket_id, semester'),
]


def upgrade():
    conn = op.get_bind()

    for name, table, columns in CONSTRAINTS:
        try:
            conn.execute(sa.text(f"ALTER TABLE `{table}` ADD CONSTRAINT {name} UNIQUE ({columns})"))
        except sa.exc.DBAPIError as e:
            # Skip if it already exists
            if "Duplicate key name" in str(e) or "already exists" in str(e):
                print(f"Skipping {name}, already exists.")
            else:
                raise


def downgrade():
    conn = op.get_bind()

    for name, table, _ in CONSTRAINTS:
        try:
            conn.execute(sa.text(f"ALTER TABLE `{table}` DROP INDEX {name}"))
        except sa.exc.DBAPIError as e:
            if "check that column/key exists" in str(e):
                print(f"Skipping drop for {name}, not found.")
            else:
                raise
