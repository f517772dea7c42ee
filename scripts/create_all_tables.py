"""
Create ALL AgentsFlow tables in the database

Creates (if missing):
1. workflows, workflow_triggers, workflow_actions
2. executions, execution_steps
3. leads, appointments
4. appointment_reminders, notification_logs

For managed environments prefer `alembic upgrade head`; this script is
meant for local databases and first-time setup.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from sqlalchemy import inspect

print("=" * 70)
print("🗄️  AgentsFlow - Create All Tables")
print("=" * 70)

database_url = os.getenv("DATABASE_URL")
if not database_url:
    print("\n❌ ERROR: DATABASE_URL not configured")
    sys.exit(1)

print(f"\n✅ DB: {database_url[:40]}...")

from agentsflow.database import engine
from agentsflow.models import Base

try:
    Base.metadata.create_all(engine)
except Exception as e:
    print(f"\n❌ ERROR: {e}")
    sys.exit(1)

tables = inspect(engine).get_table_names()

print("\n" + "─" * 70)
print("📋 Tables in database")
print("─" * 70)
for table in sorted(Base.metadata.tables):
    marker = "✅" if table in tables else "❌"
    print(f"{marker} {table}")

print("\n" + "=" * 70)
print("✅ Done!")
print("=" * 70)
