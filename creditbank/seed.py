"""Reference data loading: taxonomy, program structure, admin roles."""
import logging

import click
from flask.cli import with_appcontext

from . import db
from .models import AdminPermission, AdminRole, Basket, ProgramStructure, Vertical
from .program_structure import BASKETS, PROGRAM_STRUCTURE, VERTICALS, get_program_structure

logger = logging.getLogger(__name__)

PERMISSIONS = (
    'manage_admins',
    'manage_courses',
    'view_courses',
    'manage_students',
    'view_students',
    'manage_programs',
    'manage_curriculum',
    'view_reports',
)

ROLES = {
    'university_admin': ('University Administrator', PERMISSIONS),
    'department_admin': ('Department Administrator', (
        'manage_courses', 'view_courses', 'manage_students', 'view_students',
        'manage_programs', 'view_reports',
    )),
    'academic_coordinator': ('Academic Coordinator', (
        'manage_courses', 'view_courses', 'manage_curriculum', 'manage_programs',
        'view_students', 'view_reports',
    )),
    'student_affairs': ('Student Affairs Officer', (
        'manage_students', 'view_students', 'view_courses', 'view_reports',
    )),
    'report_viewer': ('Report Viewer', ('view_courses', 'view_students', 'view_reports')),
}


def seed_reference_data():
    """Insert whatever reference rows are missing. Safe to run repeatedly."""
    created = 0

    verticals = {v.code: v for v in Vertical.query.all()}
    for code, name in VERTICALS:
        if code not in verticals:
            verticals[code] = Vertical(code=code, name=name)
            db.session.add(verticals[code])
            created += 1
    db.session.flush()

    baskets = {b.code: b for b in Basket.query.all()}
    for code, name, vertical_code in BASKETS:
        if code not in baskets:
            baskets[code] = Basket(code=code, name=name, vertical_id=verticals[vertical_code].id)
            db.session.add(baskets[code])
            created += 1
    db.session.flush()

    existing = {
        (row.vertical_id, row.basket_id, row.semester)
        for row in ProgramStructure.query.all()
    }
    for vertical_code, basket_code, semester, credits in PROGRAM_STRUCTURE:
        key = (verticals[vertical_code].id, baskets[basket_code].id, semester)
        if key not in existing:
            db.session.add(ProgramStructure(
                vertical_id=key[0], basket_id=key[1], semester=semester,
                recommended_credits=credits,
            ))
            created += 1

    roles = {r.role_code: r for r in AdminRole.query.all()}
    for code, (name, permissions) in ROLES.items():
        role = roles.get(code)
        if role is None:
            role = AdminRole(role_code=code, role_name=name)
            db.session.add(role)
            db.session.flush()
            created += 1
        have = {p.permission_code for p in role.permissions}
        for permission in permissions:
            if permission not in have:
                db.session.add(AdminPermission(admin_role_id=role.id, permission_code=permission))
                created += 1

    db.session.commit()
    get_program_structure().invalidate()
    logger.info("Reference data seeded, %d rows created", created)
    return created


@click.command('seed')
@with_appcontext
def seed_command():
    """Load verticals, baskets, program structure and admin roles."""
    created = seed_reference_data()
    click.echo(f"Seeded reference data ({created} new rows).")
