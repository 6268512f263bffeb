"""
Credit aggregation.

Per-student summaries reduce the completion ledger; the basket overview
reduces the course catalog. Both have a pure function doing the arithmetic
and a thin query wrapper feeding it rows from the store.
"""
import math
from collections import OrderedDict, namedtuple

from sqlalchemy import func, select

from . import db
from .models import Basket, CompletedCourse, Course, Vertical
from .program_structure import get_program_structure

CompletionRow = namedtuple('CompletionRow', 'credit_awarded vertical basket semester')
CatalogRow = namedtuple('CatalogRow', 'credits vertical basket')

BASKET_FILTERS = ('semester', 'type', 'vertical', 'basket', 'degree', 'branch')


def percentage(completed, required):
    """Whole-number percentage rounded half up; ``None`` when nothing is required."""
    if not required:
        return None
    return int(math.floor(completed / required * 100 + 0.5))


def summarize_completions(rows, requirements):
    """Reduce completion rows into totals and per-vertical progress.

    ``requirements`` maps vertical code to required credits. Verticals present
    in ``requirements`` always get a progress entry; verticals only seen in
    ``rows`` get one with ``required`` and ``percentage`` set to ``None``.
    """
    total = 0
    by_vertical = OrderedDict()
    by_basket = OrderedDict()
    by_semester = {}

    for row in rows:
        credits = row.credit_awarded or 0
        total += credits
        by_vertical[row.vertical] = by_vertical.get(row.vertical, 0) + credits
        by_basket[row.basket] = by_basket.get(row.basket, 0) + credits
        by_semester[row.semester] = by_semester.get(row.semester, 0) + credits

    progress = []
    for vertical, required in requirements.items():
        completed = by_vertical.get(vertical, 0)
        progress.append({
            "vertical": vertical,
            "completed": completed,
            "required": required,
            "percentage": percentage(completed, required),
        })
    for vertical, completed in by_vertical.items():
        if vertical not in requirements:
            progress.append({
                "vertical": vertical,
                "completed": completed,
                "required": None,
                "percentage": None,
            })

    total_required = sum(requirements.values())
    return {
        "total_credits": total,
        "total_required": total_required,
        "completion_percentage": percentage(total, total_required) or 0,
        "credits_by_vertical": dict(by_vertical),
        "credits_by_basket": dict(by_basket),
        "credits_by_semester": dict(sorted(by_semester.items())),
        "vertical_progress": progress,
    }


def completion_rows(student_id):
    rows = db.session.execute(
        select(CompletedCourse.credit_awarded, Vertical.code, Basket.code, Course.semester)
        .join(Course, CompletedCourse.course_id == Course.id)
        .join(Vertical, Course.vertical_id == Vertical.id)
        .join(Basket, Course.basket_id == Basket.id)
        .where(CompletedCourse.student_id == student_id)
        .order_by(CompletedCourse.id)
    ).all()
    return [CompletionRow(*row) for row in rows]


def student_credit_summary(student_id, store=None):
    store = store or get_program_structure()
    rows = completion_rows(student_id)
    verticals = [code for (code,) in db.session.execute(
        select(Vertical.code).order_by(Vertical.id)
    ).all()]
    for row in rows:
        if row.vertical not in verticals:
            verticals.append(row.vertical)
    return summarize_completions(rows, store.vertical_requirements(verticals))


# ----------------------------------------------------------
# Catalog-wide basket overview
# ----------------------------------------------------------
def group_basket_credits(rows):
    """Sum offered credits per (vertical, basket), sorted by the pair."""
    totals = {}
    for row in rows:
        key = (row.vertical, row.basket)
        totals[key] = totals.get(key, 0) + (row.credits or 0)
    return [
        {"vertical": vertical, "basket": basket, "total_credits": total}
        for (vertical, basket), total in sorted(totals.items())
    ]


def _catalog_select():
    return (
        select(Course.credits, Vertical.code, Basket.code)
        .join(Vertical, Course.vertical_id == Vertical.id)
        .join(Basket, Course.basket_id == Basket.id)
        .where(Course.is_active.is_(True))
    )


def filtered_catalog_rows(filters):
    query = _catalog_select()
    if filters.get('semester') is not None:
        query = query.where(Course.semester == filters['semester'])
    if filters.get('type'):
        query = query.where(Course.type == filters['type'])
    if filters.get('vertical'):
        query = query.where(Vertical.code == filters['vertical'])
    if filters.get('basket'):
        query = query.where(Basket.code == filters['basket'])
    if filters.get('degree'):
        query = query.where(Course.degree == filters['degree'])
    if filters.get('branch'):
        query = query.where(Course.branch == filters['branch'])
    return [CatalogRow(*row) for row in db.session.execute(query).all()]


def recompute_basket_credits(filters=None):
    return group_basket_credits(filtered_catalog_rows(filters or {}))


def precomputed_basket_credits():
    """Grouped sums computed by the store over the whole active catalog."""
    rows = db.session.execute(
        select(Vertical.code, Basket.code, func.sum(Course.credits))
        .join(Vertical, Course.vertical_id == Vertical.id)
        .join(Basket, Course.basket_id == Basket.id)
        .where(Course.is_active.is_(True))
        .group_by(Vertical.code, Basket.code)
        .order_by(Vertical.code, Basket.code)
    ).all()
    return [
        {"vertical": vertical, "basket": basket, "total_credits": int(total or 0)}
        for vertical, basket, total in rows
    ]


def basket_credit_overview(filters=None):
    """Return ``(rows, source)``; active filters force the recompute path."""
    active = {k: v for k, v in (filters or {}).items() if v not in (None, '')}
    if active:
        return recompute_basket_credits(active), 'filtered'
    return precomputed_basket_credits(), 'aggregate'


def student_basket_credits(student_id, store=None):
    """Completed vs offered vs recommended credits for each basket a student touched."""
    store = store or get_program_structure()
    completed = {}
    for row in completion_rows(student_id):
        key = (row.vertical, row.basket)
        completed[key] = completed.get(key, 0) + (row.credit_awarded or 0)

    offered = {
        (r["vertical"], r["basket"]): r["total_credits"]
        for r in precomputed_basket_credits()
    }
    required = store.basket_requirements(completed.keys())

    baskets = []
    for (vertical, basket), done in sorted(completed.items()):
        needed = required.get((vertical, basket))
        baskets.append({
            "vertical": vertical,
            "basket": basket,
            "completed_credits": done,
            "total_credits": offered.get((vertical, basket), 0),
            "required_credits": needed,
            "percentage": percentage(done, needed),
            "is_completed": needed is not None and done >= needed,
        })

    total_completed = sum(completed.values())
    total_required = sum(b["required_credits"] or 0 for b in baskets)
    return {
        "baskets": baskets,
        "total_completed": total_completed,
        "total_required": total_required,
        "overall_percentage": percentage(total_completed, total_required) or 0,
        "completed_baskets": sum(1 for b in baskets if b["is_completed"]),
        "total_baskets": len(baskets),
    }


def progress_report(student_id):
    """Completions grouped by the semester recorded on each completion."""
    records = (
        CompletedCourse.query
        .filter_by(student_id=student_id)
        .order_by(CompletedCourse.semester, CompletedCourse.completed_at)
        .all()
    )
    report = {}
    for record in records:
        report.setdefault(record.semester, []).append({
            "course_code": record.course.course_code,
            "course_name": record.course.title,
            "basket": record.course.basket.code,
            "credits_earned": record.credit_awarded,
            "completion_date": record.completed_at.isoformat(),
        })
    return {
        "progress_report": report,
        "total_credits_completed": sum(r.credit_awarded for r in records),
    }
