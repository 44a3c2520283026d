"""
Seed the founder account and the built-in workflow templates.

Usage:
  python scripts/seed_workflows.py
"""
from __future__ import annotations

from sqlalchemy import text

from volunteer_automation.config import settings
from volunteer_automation.database import SessionLocal, init_db
from volunteer_automation.seeds import seed_founder, seed_workflow_templates


def main() -> None:
    init_db()
    db = SessionLocal()
    try:
        created = seed_founder(db, settings.admin_user_id, settings.admin_email, settings.admin_name)
        inserted = seed_workflow_templates(db, settings.admin_user_id)
        total = db.execute(text("SELECT COUNT(*) FROM ai_workflows")).scalar()
        print(f"founder_created={created} templates_inserted={inserted} total={int(total or 0)}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
