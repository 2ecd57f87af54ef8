from fastapi.testclient import TestClient
from sqlalchemy import text

from alchemist.db import SessionLocal
from alchemist.main import app
from alchemist.store import STORE


def test_api_writes_persist_in_sql_tables(tasks_rows):
    client = TestClient(app)

    workspace = client.post("/v1/workspaces", json={"name": "sql-ws"})
    assert workspace.status_code == 201
    workspace_id = workspace.json()["id"]

    response = client.put(f"/v1/workspaces/{workspace_id}/datasets/tasks", json={"rows": tasks_rows})
    assert response.status_code == 200
    STORE.add_rule(workspace_id, {"type": "coRun", "config": {"tasks": ["T1", "T3"]}}, source="suggested")

    with SessionLocal() as session:
        workspaces_count = session.execute(text("SELECT COUNT(*) FROM workspace")).scalar_one()
        datasets_count = session.execute(text("SELECT COUNT(*) FROM dataset")).scalar_one()
        rule_source = session.execute(text("SELECT source FROM rule")).scalar_one()
        events_count = session.execute(text("SELECT COUNT(*) FROM event_log")).scalar_one()

    assert workspaces_count == 1
    assert datasets_count == 1
    assert rule_source == "suggested"
    assert events_count == 2


def test_reset_clears_every_table():
    workspace_id = STORE.create_workspace("temp")["id"]
    STORE.replace_dataset(workspace_id, "clients", [])

    STORE.reset()

    assert STORE.list_workspaces() == []
    assert STORE.get_workspace(workspace_id) is None
