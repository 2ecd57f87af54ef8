import json

import pytest
from fastapi.testclient import TestClient

from alchemist.assistant import AssistantError
from alchemist.main import app, get_assistant
from alchemist.store import STORE


class _FakeAssistant:
    def __init__(self, reply="[]", fail=False):
        self.reply = reply
        self.fail = fail
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        if self.fail:
            raise AssistantError("boom")
        return self.reply


@pytest.fixture
def client():
    app.dependency_overrides.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()


def _use_assistant(assistant):
    app.dependency_overrides[get_assistant] = lambda: assistant
    return assistant


def _create_workspace(client: TestClient, name: str = "ws") -> str:
    response = client.post("/v1/workspaces", json={"name": name})
    assert response.status_code == 201
    return response.json()["id"]


def _load_all(client: TestClient, workspace_id: str, clients_rows, workers_rows, tasks_rows) -> None:
    for entity, rows in (("clients", clients_rows), ("workers", workers_rows), ("tasks", tasks_rows)):
        response = client.put(f"/v1/workspaces/{workspace_id}/datasets/{entity}", json={"rows": rows})
        assert response.status_code == 200


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_workspace_lifecycle(client):
    workspace_id = _create_workspace(client, "spring")
    body = client.get(f"/v1/workspaces/{workspace_id}").json()
    assert body["name"] == "spring"
    assert body["weights"] == {"priority": 5, "fairness": 5, "load": 5}
    assert body["datasets"] == {}
    assert [item["id"] for item in client.get("/v1/workspaces").json()] == [workspace_id]


def test_unknown_workspace_uses_error_envelope(client):
    response = client.get("/v1/workspaces/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "WORKSPACE_NOT_FOUND"

    response = client.put(
        "/v1/workspaces/00000000-0000-0000-0000-000000000000/datasets/tasks", json={"rows": []}
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "WORKSPACE_NOT_FOUND"


def test_replacing_a_dataset_returns_its_errors(client, clients_rows):
    workspace_id = _create_workspace(client)
    rows = [dict(clients_rows[0], PriorityLevel="9"), clients_rows[1]]
    response = client.put(f"/v1/workspaces/{workspace_id}/datasets/clients", json={"rows": rows, "file_name": "c.csv"})
    assert response.status_code == 200
    body = response.json()
    assert body["dataset"]["row_count"] == 2
    assert body["dataset"]["version"] == 1
    assert body["dataset"]["file_name"] == "c.csv"
    assert [(item["rowIndex"], item["field"]) for item in body["errors"]] == [(0, "PriorityLevel")]

    fixed = client.put(f"/v1/workspaces/{workspace_id}/datasets/clients", json={"rows": clients_rows}).json()
    assert fixed["dataset"]["version"] == 2
    assert fixed["errors"] == []


def test_deeply_nested_cell_is_reported_not_a_server_error(client, clients_rows):
    workspace_id = _create_workspace(client)
    rows = [dict(clients_rows[0], AttributesJSON="[" * 5000)]
    response = client.put(f"/v1/workspaces/{workspace_id}/datasets/clients", json={"rows": rows})
    assert response.status_code == 200
    assert [item["message"] for item in response.json()["errors"]] == ["Malformed JSON in AttributesJSON"]


def test_cross_reference_errors_appear_once_all_tables_exist(client, clients_rows, workers_rows, tasks_rows):
    workspace_id = _create_workspace(client)
    clients = [dict(clients_rows[0], RequestedTaskIDs="T1,T404")]
    client.put(f"/v1/workspaces/{workspace_id}/datasets/clients", json={"rows": clients})
    client.put(f"/v1/workspaces/{workspace_id}/datasets/workers", json={"rows": workers_rows})
    assert client.get(f"/v1/workspaces/{workspace_id}/errors").json() == []

    client.put(f"/v1/workspaces/{workspace_id}/datasets/tasks", json={"rows": tasks_rows})
    errors = client.get(f"/v1/workspaces/{workspace_id}/errors", params={"entity": "clients"}).json()
    assert [item["message"] for item in errors] == ["Unknown task ID: T404"]

    # Fixing the tasks table clears the client-side reference error too.
    tasks = tasks_rows + [dict(tasks_rows[2], TaskID="T404")]
    client.put(f"/v1/workspaces/{workspace_id}/datasets/tasks", json={"rows": tasks})
    assert client.get(f"/v1/workspaces/{workspace_id}/errors").json() == []


def test_error_listing_rejects_unknown_entity(client):
    workspace_id = _create_workspace(client)
    response = client.get(f"/v1/workspaces/{workspace_id}/errors", params={"entity": "people"})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "UNKNOWN_ENTITY"


def test_upload_detects_entity_from_file_name(client):
    workspace_id = _create_workspace(client)
    content = b"TaskID,Duration,PreferredPhases,RequiredSkills,MaxConcurrent\nT1,0,1-2,[],1\n"
    response = client.post(
        f"/v1/workspaces/{workspace_id}/uploads",
        files={"file": ("Tasks.csv", content, "text/csv")},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["dataset"]["entity"] == "tasks"
    assert [item["message"] for item in body["errors"]] == ["Duration must be >= 1"]


def test_upload_with_explicit_entity_and_bad_extension(client):
    workspace_id = _create_workspace(client)
    response = client.post(
        f"/v1/workspaces/{workspace_id}/uploads",
        files={"file": ("export.csv", b"ClientID\nC1\n", "text/csv")},
        data={"entity": "clients"},
    )
    assert response.status_code == 200
    assert [item["field"] for item in response.json()["errors"]][:1] == ["PriorityLevel"]

    response = client.post(
        f"/v1/workspaces/{workspace_id}/uploads",
        files={"file": ("clients.txt", b"x", "text/plain")},
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "UNSUPPORTED_FILE_TYPE"

    response = client.post(
        f"/v1/workspaces/{workspace_id}/uploads",
        files={"file": ("people.csv", b"a\n1\n", "text/csv")},
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "UNKNOWN_ENTITY"


def test_dataset_query_filter(client, clients_rows):
    workspace_id = _create_workspace(client)
    client.put(f"/v1/workspaces/{workspace_id}/datasets/clients", json={"rows": clients_rows})
    body = client.get(f"/v1/workspaces/{workspace_id}/datasets/clients", params={"q": "PriorityLevel > 4"}).json()
    assert [row["ClientID"] for row in body["rows"]] == ["C2"]
    assert body["total_count"] == 2
    assert body["conditions"] == [{"field": "PriorityLevel", "op": ">", "value": 4}]

    missing = client.get(f"/v1/workspaces/{workspace_id}/datasets/tasks")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "DATASET_NOT_FOUND"


def test_row_edit_revalidates(client, workers_rows):
    workspace_id = _create_workspace(client)
    client.put(f"/v1/workspaces/{workspace_id}/datasets/workers", json={"rows": workers_rows})

    bad = dict(workers_rows[1], MaxLoadPerPhase="0")
    response = client.patch(f"/v1/workspaces/{workspace_id}/datasets/workers/rows/1", json={"row": bad})
    assert response.status_code == 200
    assert [(item["rowIndex"], item["field"]) for item in response.json()["errors"]] == [(1, "MaxLoadPerPhase")]
    assert response.json()["dataset"]["rows"][1]["MaxLoadPerPhase"] == "0"

    response = client.patch(f"/v1/workspaces/{workspace_id}/datasets/workers/rows/5", json={"row": bad})
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "ROW_OUT_OF_RANGE"


def test_rule_lifecycle_with_cycle_reporting(client, tasks_rows):
    workspace_id = _create_workspace(client)
    client.put(f"/v1/workspaces/{workspace_id}/datasets/tasks", json={"rows": tasks_rows})
    rules_url = f"/v1/workspaces/{workspace_id}/rules"

    first = client.post(rules_url, json={"type": "coRun", "config": {"tasks": ["T1", "T2"]}})
    assert first.status_code == 201
    assert first.json()["errors"] == []
    client.post(rules_url, json={"type": "coRun", "config": {"tasks": ["T2", "T3"]}})
    third = client.post(rules_url, json={"type": "coRun", "config": {"tasks": ["T3", "T1"]}})
    assert third.status_code == 201
    assert len(third.json()["errors"]) == 1
    assert third.json()["errors"][0]["message"].startswith("Circular co-run group involving")

    listed = client.get(rules_url).json()
    assert [rule["position"] for rule in listed] == [1, 2, 3]
    assert len(client.get(f"/v1/workspaces/{workspace_id}/errors", params={"entity": "rules"}).json()) == 1

    response = client.delete(f"{rules_url}/{listed[2]['id']}")
    assert response.status_code == 200
    assert response.json()["errors"] == []
    assert client.get(f"/v1/workspaces/{workspace_id}/errors").json() == []

    again = client.delete(f"{rules_url}/{listed[2]['id']}")
    assert again.status_code == 404
    assert again.json()["error"]["code"] == "RULE_NOT_FOUND"


def test_rules_failing_shape_are_rejected(client, tasks_rows):
    workspace_id = _create_workspace(client)
    client.put(f"/v1/workspaces/{workspace_id}/datasets/tasks", json={"rows": tasks_rows})
    rules_url = f"/v1/workspaces/{workspace_id}/rules"

    response = client.post(rules_url, json={"type": "coRun", "config": {"tasks": ["T1", "T1", "T2"]}})
    assert response.status_code == 422
    assert response.json()["error"] == {
        "code": "INVALID_RULE_SHAPE",
        "message": "Duplicate TaskIDs: T1",
        "retryable": False,
        "details": None,
    }

    response = client.post(rules_url, json={"type": "slotRestriction", "config": {"group": "G"}})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_RULE"
    assert client.get(rules_url).json() == []


def test_dataset_changes_keep_rule_errors(client, tasks_rows):
    workspace_id = _create_workspace(client)
    client.put(f"/v1/workspaces/{workspace_id}/datasets/tasks", json={"rows": tasks_rows})
    rules_url = f"/v1/workspaces/{workspace_id}/rules"
    for pair in (["T1", "T2"], ["T2", "T3"], ["T3", "T1"]):
        client.post(rules_url, json={"type": "coRun", "config": {"tasks": pair}})

    client.put(f"/v1/workspaces/{workspace_id}/datasets/tasks", json={"rows": [dict(tasks_rows[0], Duration="0")] + tasks_rows[1:]})
    entities = sorted(item["entity"] for item in client.get(f"/v1/workspaces/{workspace_id}/errors").json())
    assert entities == ["rules", "tasks"]


def test_weights_and_presets(client):
    workspace_id = _create_workspace(client)
    url = f"/v1/workspaces/{workspace_id}/weights"

    assert client.put(url, json={"preset": "fair"}).json() == {"priority": 5, "fairness": 10, "load": 5}
    assert client.put(url, json={"load": 0}).json() == {"priority": 5, "fairness": 10, "load": 0}
    assert client.get(url).json() == {"priority": 5, "fairness": 10, "load": 0}
    assert client.put(url, json={"priority": 11}).status_code == 422
    assert client.put(url, json={"preset": "speed"}).status_code == 422


def test_exports(client, clients_rows, tasks_rows):
    workspace_id = _create_workspace(client)
    client.put(f"/v1/workspaces/{workspace_id}/datasets/clients", json={"rows": clients_rows})
    client.put(f"/v1/workspaces/{workspace_id}/datasets/tasks", json={"rows": [dict(tasks_rows[0], Duration="0")]})
    client.post(f"/v1/workspaces/{workspace_id}/rules", json={"type": "coRun", "config": {"tasks": ["T1"]}})
    client.put(f"/v1/workspaces/{workspace_id}/weights", json={"preset": "load"})

    csv_response = client.get(f"/v1/workspaces/{workspace_id}/exports/datasets/clients")
    assert csv_response.status_code == 200
    assert csv_response.headers["content-type"].startswith("text/csv")
    assert 'filename="clients_cleaned.csv"' in csv_response.headers["content-disposition"]
    assert csv_response.text.startswith('"ClientID","PriorityLevel"')
    assert csv_response.text.count("\r\n") == 3

    rules = json.loads(client.get(f"/v1/workspaces/{workspace_id}/exports/rules.json").text)
    assert rules == [
        {"type": "coRun", "config": {"tasks": ["T1"]}},
        {"type": "weights", "config": {"priority": 2, "fairness": 2, "load": 10}},
    ]

    errors = json.loads(client.get(f"/v1/workspaces/{workspace_id}/exports/validation_errors.json").text)
    assert [item["field"] for item in errors] == ["Duration"]

    missing = client.get(f"/v1/workspaces/{workspace_id}/exports/datasets/workers")
    assert missing.status_code == 409
    assert missing.json()["error"]["code"] == "NO_DATA"


def test_events_record_mutations(client, tasks_rows):
    workspace_id = _create_workspace(client)
    client.put(f"/v1/workspaces/{workspace_id}/datasets/tasks", json={"rows": tasks_rows})
    rule = client.post(f"/v1/workspaces/{workspace_id}/rules", json={"type": "coRun", "config": {"tasks": ["T1", "T2"]}})
    client.delete(f"/v1/workspaces/{workspace_id}/rules/{rule.json()['rule']['id']}")
    client.put(f"/v1/workspaces/{workspace_id}/weights", json={"preset": "fair"})

    events = client.get(f"/v1/workspaces/{workspace_id}/events").json()
    assert [event["event_type"] for event in events] == [
        "dataset_replaced",
        "rule_added",
        "rule_deleted",
        "weights_updated",
    ]
    assert STORE.list_events(workspace_id)[0]["payload"]["row_count"] == 3


def test_assistant_endpoints_need_configuration(client):
    _use_assistant(None)
    response = client.post("/v1/rules/parse", json={"text": "run T1 with T2"})
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "ASSISTANT_UNAVAILABLE"


def test_assistant_failure_is_bad_gateway(client):
    _use_assistant(_FakeAssistant(fail=True))
    response = client.post("/v1/rules/parse", json={"text": "run T1 with T2"})
    assert response.status_code == 502
    assert response.json()["error"]["retryable"] is True


def test_parse_rule_returns_validated_candidate(client):
    assistant = _use_assistant(_FakeAssistant('```json\n{"type": "coRun", "config": {"tasks": ["T1", "T2"]}}\n```'))
    response = client.post("/v1/rules/parse", json={"text": "run T1 with T2"})
    assert response.json() == {"rule": {"type": "coRun", "config": {"tasks": ["T1", "T2"]}}}
    assert "run T1 with T2" in assistant.prompts[0]

    _use_assistant(_FakeAssistant('{"type": "coRun", "config": {"tasks": []}}'))
    assert client.post("/v1/rules/parse", json={"text": "?"}).json() == {"rule": None}


def test_suggest_rules_combines_heuristic_and_assistant(client):
    workspace_id = _create_workspace(client)
    clients = [{"ClientID": f"C{i}", "RequestedTaskIDs": "T1,T2"} for i in range(3)]
    client.put(f"/v1/workspaces/{workspace_id}/datasets/clients", json={"rows": clients})
    url = f"/v1/workspaces/{workspace_id}/rules/suggest"

    _use_assistant(None)
    assert client.post(url).json() == {"rules": [{"type": "coRun", "config": {"tasks": ["T1", "T2"]}}]}

    _use_assistant(
        _FakeAssistant(
            '[{"type": "coRun", "config": {"tasks": ["T1", "T2"]}},'
            ' {"type": "loadLimit", "config": {"group": "G", "maxSlotsPerPhase": 2}},'
            ' {"type": "bogus"}]'
        )
    )
    rules = client.post(url, json={"use_assistant": True}).json()["rules"]
    assert rules == [
        {"type": "coRun", "config": {"tasks": ["T1", "T2"]}},
        {"type": "loadLimit", "config": {"group": "G", "maxSlotsPerPhase": 2}},
    ]
    # Suggestions are not stored until added explicitly.
    assert client.get(f"/v1/workspaces/{workspace_id}/rules").json() == []


def test_filter_parse_local_and_assistant(client):
    _use_assistant(None)
    local = client.post("/v1/filters/parse", json={"entity": "tasks", "query": "Duration > 1", "use_assistant": False})
    assert local.json() == {"conditions": [{"field": "Duration", "op": ">", "value": 1}]}

    _use_assistant(_FakeAssistant('[{"field": "duration", "op": "<=", "value": 2}]'))
    remote = client.post("/v1/filters/parse", json={"entity": "tasks", "query": "short tasks"})
    assert remote.json() == {"conditions": [{"field": "Duration", "op": "<=", "value": 2}]}


def test_suggest_fix_revalidates_without_saving(client, clients_rows):
    workspace_id = _create_workspace(client)
    rows = [dict(clients_rows[0], PriorityLevel="9", AttributesJSON="{bad")]
    client.put(f"/v1/workspaces/{workspace_id}/datasets/clients", json={"rows": rows})

    fixed_row = dict(rows[0], PriorityLevel="4")
    assistant = _use_assistant(_FakeAssistant(json.dumps(fixed_row)))
    url = f"/v1/workspaces/{workspace_id}/datasets/clients/rows/0/suggest-fix"
    body = client.post(url).json()
    assert body["rowIndex"] == 0
    assert body["row"]["PriorityLevel"] == "4"
    assert [item["field"] for item in body["remaining_errors"]] == ["AttributesJSON"]
    assert "PriorityLevel must be between 1 and 5" in assistant.prompts[0]

    stored = client.get(f"/v1/workspaces/{workspace_id}/datasets/clients").json()
    assert stored["rows"][0]["PriorityLevel"] == "9"

    assert client.post(f"/v1/workspaces/{workspace_id}/datasets/clients/rows/3/suggest-fix").status_code == 404
