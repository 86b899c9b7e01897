"""
Seed System Templates — inserts the shared default requirement templates.

Idempotent: templates already present (by name) are left untouched.

Usage:
  python backend/scripts/seed_system_templates.py
"""

from __future__ import annotations

import asyncio
import os
import sys

# Add backend/ to import path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from compliance.defaults import ensure_system_templates
from core.config import get_settings
from db.session import task_session


async def seed_system_templates() -> int:
    async with task_session(get_settings().database_url) as db:
        created = await ensure_system_templates(db)
    print(f"Seeded {created} system template(s)")
    return created


if __name__ == "__main__":
    asyncio.run(seed_system_templates())
