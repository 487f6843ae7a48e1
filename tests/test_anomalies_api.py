import pytest

from conftest import auth_headers


@pytest.fixture()
def execution(client, employee, checklist):
    r = client.post("/api/executions", headers=auth_headers(employee), json={"checklist_id": str(checklist.id)})
    assert r.status_code == 201
    return r.json()


def _report(client, user, execution, epi_type, **extra):
    payload = {
        "execution_id": execution["id"],
        "epi_type_id": str(epi_type.id),
        "category": "damage",
        "severity": "medium",
        "description": "Casco trincado",
        **extra,
    }
    return client.post("/api/anomalies", headers=auth_headers(user), json=payload)


def test_critical_report_is_escalated(client, employee, execution, epi_type):
    r = _report(client, employee, execution, epi_type, severity="critical", priority="low", safety_impact="none")
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "open"
    assert body["priority"] == "urgent"
    assert body["safety_impact"] == "high"
    assert body["reported_by"] == str(employee.id)


def test_cannot_report_on_someone_elses_execution(client, make_user, execution, epi_type):
    stranger = make_user("supervisor", department="Manutenção")
    assert _report(client, stranger, execution, epi_type).status_code == 403


def test_unknown_execution_is_a_validation_error(client, employee, epi_type):
    fake = {"id": "00000000-0000-0000-0000-000000000000"}
    r = _report(client, employee, fake, epi_type)
    assert r.status_code == 400


def test_lifecycle_open_to_closed(client, employee, supervisor, execution, epi_type):
    a = _report(client, employee, execution, epi_type).json()
    url = f"/api/anomalies/{a['id']}"

    acted = client.post(
        f"{url}/actions",
        headers=auth_headers(employee),
        json={"action": "Isolamento", "description": "Capacete recolhido", "cost": 15.5},
    )
    assert acted.status_code == 200
    assert acted.json()["status"] == "in_progress"
    assert acted.json()["total_cost"] == 15.5

    resolved = client.post(
        f"{url}/resolve",
        headers=auth_headers(employee),
        json={"resolution_method": "replacement", "notes": "Capacete substituído", "cost": 80},
    )
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "resolved"
    assert resolved.json()["resolution"]["resolved_by"] == str(employee.id)
    assert resolved.json()["total_cost"] == 95.5

    assert client.post(f"{url}/close", headers=auth_headers(employee)).status_code == 403

    closed = client.post(f"{url}/close", headers=auth_headers(supervisor))
    assert closed.status_code == 200
    assert closed.json()["status"] == "closed"

    # closing twice is harmless
    assert client.post(f"{url}/close", headers=auth_headers(supervisor)).json()["status"] == "closed"

    blocked = client.post(
        f"{url}/resolve",
        headers=auth_headers(supervisor),
        json={"resolution_method": "repair", "notes": "Novamente"},
    )
    assert blocked.status_code == 422
    more = client.post(f"{url}/actions", headers=auth_headers(supervisor), json={"action": "x", "description": "y"})
    assert more.status_code == 422


def test_resolution_requires_notes(client, employee, execution, epi_type):
    a = _report(client, employee, execution, epi_type).json()
    r = client.post(f"/api/anomalies/{a['id']}/resolve", headers=auth_headers(employee), json={"resolution_method": "repair"})
    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"


def test_update_keeps_critical_rules(client, employee, execution, epi_type):
    a = _report(client, employee, execution, epi_type).json()
    r = client.put(f"/api/anomalies/{a['id']}", headers=auth_headers(employee), json={"severity": "critical"})
    assert r.status_code == 200
    assert r.json()["priority"] == "urgent"


def test_only_reporter_or_privileged_may_edit(client, supervisor, employee, technician, execution, epi_type):
    a = _report(client, employee, execution, epi_type).json()
    url = f"/api/anomalies/{a['id']}"
    assert client.put(url, headers=auth_headers(supervisor), json={"notes": "x"}).status_code == 403
    assert client.put(url, headers=auth_headers(technician), json={"notes": "x"}).status_code == 200


def test_listing_filters_and_scope(client, make_user, employee, execution, epi_type):
    _report(client, employee, execution, epi_type, severity="low")
    _report(client, employee, execution, epi_type, severity="high")
    headers = auth_headers(employee)

    assert client.get("/api/anomalies", headers=headers).json()["pagination"]["total"] == 2
    high = client.get("/api/anomalies", headers=headers, params={"severity": "high"}).json()
    assert [x["severity"] for x in high["items"]] == ["high"]

    outsider = make_user("employee", department="Manutenção", supervisor=make_user("supervisor", department="Manutenção"))
    assert client.get("/api/anomalies", headers=auth_headers(outsider)).json()["pagination"]["total"] == 0
    assert client.get(f"/api/anomalies/{high['items'][0]['id']}", headers=auth_headers(outsider)).status_code == 403
