from __future__ import annotations

from sqlalchemy.orm import Session

from volunteer_automation.models import WORKFLOW_STATUS_PAUSED, User, Workflow
from volunteer_automation.schemas.workflow import dump_definition
from volunteer_automation.services.workflow_service import list_templates


def seed_founder(db: Session, user_id: str, email: str, name: str) -> bool:
    """Make sure the founder account exists so ``founders`` recipients resolve."""
    row = db.query(User).filter(User.id == user_id).first()
    if row is not None:
        return False
    db.add(User(id=user_id, name=name, email=email, role="founder", status="active"))
    db.commit()
    return True


def seed_workflow_templates(db: Session, owner_id: str) -> int:
    """Install each built-in template once, paused, for the owner to review."""
    existing = {
        name for (name,) in db.query(Workflow.name).filter(Workflow.created_by == owner_id).all()
    }
    inserted = 0
    for template in list_templates():
        if template.name in existing:
            continue
        db.add(
            Workflow(
                name=template.name,
                description=template.description,
                trigger_conditions=[dump_definition(t) for t in template.triggers],
                actions=[dump_definition(a) for a in template.actions],
                status=WORKFLOW_STATUS_PAUSED,
                execution_count=0,
                created_by=owner_id,
            )
        )
        inserted += 1

    db.commit()
    return inserted
