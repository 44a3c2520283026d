"""
Aggregate reports produced by ``generate_report`` workflow actions.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from volunteer_automation.models import Form, FormResponse, Presentation, Volunteer, VolunteerHours

REPORT_TYPES = ("volunteer_activity", "form_responses", "monthly_summary")


def volunteer_activity_report(db: Session, now: datetime) -> Dict[str, Any]:
    total_volunteers = db.query(func.count(Volunteer.id)).scalar() or 0
    total_hours = float(db.query(func.coalesce(func.sum(VolunteerHours.hours_logged), 0)).scalar() or 0)
    return {
        "totalVolunteers": total_volunteers,
        "totalHours": total_hours,
        "averageHoursPerVolunteer": total_hours / total_volunteers if total_volunteers else 0,
        "generatedAt": now.isoformat(),
    }


def form_response_report(db: Session, now: datetime) -> Dict[str, Any]:
    rows = (
        db.query(Form.title, func.count(FormResponse.id))
        .outerjoin(FormResponse, FormResponse.form_id == Form.id)
        .group_by(Form.id, Form.title)
        .order_by(Form.title.asc())
        .all()
    )
    return {
        "forms": [{"title": title, "responses": count} for title, count in rows],
        "generatedAt": now.isoformat(),
    }


def monthly_summary_report(db: Session, now: datetime) -> Dict[str, Any]:
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    presentations_scheduled = (
        db.query(func.count(Presentation.id))
        .filter(Presentation.scheduled_date >= start_of_month)
        .scalar()
    ) or 0
    new_volunteers = (
        db.query(func.count(Volunteer.id))
        .filter(Volunteer.created_at >= start_of_month)
        .scalar()
    ) or 0
    new_volunteer_hours = (
        db.query(func.coalesce(func.sum(VolunteerHours.hours_logged), 0))
        .join(Volunteer, Volunteer.id == VolunteerHours.volunteer_id)
        .filter(Volunteer.created_at >= start_of_month)
        .scalar()
    ) or 0

    return {
        "month": start_of_month.strftime("%Y-%m"),
        "presentationsScheduled": presentations_scheduled,
        "newVolunteers": new_volunteers,
        "totalVolunteerHours": float(new_volunteer_hours),
        "generatedAt": now.isoformat(),
    }


REPORT_BUILDERS = {
    "volunteer_activity": volunteer_activity_report,
    "form_responses": form_response_report,
    "monthly_summary": monthly_summary_report,
}


def build_report(db: Session, report_type: str, now: datetime) -> Dict[str, Any]:
    builder = REPORT_BUILDERS.get(report_type)
    if builder is None:
        return {"message": "Report generated", "type": report_type}
    return builder(db, now)
