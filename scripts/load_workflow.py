"""
Load a Workflow Fixture to Database

Creates the workflow (or updates an existing one with the same name),
its trigger, and replaces its whole action tree from a JSON fixture.

Usage:
    python scripts/load_workflow.py [fixtures/lead_welcome_workflow.json] [--activate]
"""

import os
import sys
import json

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from dotenv import load_dotenv
load_dotenv()

from agentsflow.database import get_db
from agentsflow.core.action_graph import replace_workflow_actions
from agentsflow.core.exceptions import ValidationError
from agentsflow.models import Trigger, Workflow
from agentsflow.models.workflow import WorkflowStatus

DEFAULT_FIXTURE = os.path.join(os.path.dirname(__file__), '../fixtures/lead_welcome_workflow.json')


def load_workflow(fixture_path: str, activate: bool = False) -> int:
    print(f"📂 Loading workflow from: {fixture_path}")
    with open(fixture_path, 'r') as f:
        workflow_data = json.load(f)

    print(f"✅ Loaded workflow: {workflow_data['name']}")
    print(f"   Description: {workflow_data.get('description', 'N/A')}")
    print(f"   Actions: {len(workflow_data.get('actions', []))}")

    with get_db() as db:
        workflow = db.query(Workflow).filter(Workflow.name == workflow_data['name']).first()

        if workflow:
            print(f"\n⚠️  Workflow '{workflow.name}' already exists (ID: {workflow.id}), updating")
            workflow.description = workflow_data.get('description')
            for trigger in list(workflow.triggers):
                db.delete(trigger)
        else:
            workflow = Workflow(
                name=workflow_data['name'],
                description=workflow_data.get('description'),
            )
            db.add(workflow)

        if activate:
            workflow.status = WorkflowStatus.ACTIVE

        trigger_data = workflow_data.get('trigger')
        if trigger_data:
            workflow.triggers.append(Trigger(
                trigger_type=trigger_data['trigger_type'],
                trigger_config=trigger_data.get('trigger_config', {}),
            ))
        db.commit()

        try:
            actions = replace_workflow_actions(db, workflow.id, workflow_data.get('actions', []))
        except ValidationError as e:
            print(f"\n❌ Invalid actions: {e.message}")
            sys.exit(1)

        print(f"\n✅ Workflow saved!")
        print(f"   ID: {workflow.id}")
        print(f"   Status: {workflow.status}")
        print(f"   Actions: {[a.id for a in actions]}")
        return workflow.id


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if not a.startswith('--')]
    fixture = args[0] if args else DEFAULT_FIXTURE

    print("=" * 70)
    print("🚀 AgentsFlow - Load Workflow to Database")
    print("=" * 70)
    print()

    workflow_id = load_workflow(fixture, activate='--activate' in sys.argv)

    print()
    print("=" * 70)
    print(f"✅ Done! Workflow ID: {workflow_id}")
    print("=" * 70)
