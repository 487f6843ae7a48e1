from conftest import auth_headers


def _new_user(**overrides):
    payload = {
        "name": "Novo Colaborador",
        "email": "novo@empresa.com.br",
        "password": "senha123",
        "role": "employee",
        "department": "Produção",
        "employee_id": "N0001",
    }
    payload.update(overrides)
    return payload


def test_employee_requires_supervisor(client, technician):
    r = client.post("/api/users", headers=auth_headers(technician), json=_new_user())
    assert r.status_code == 400
    assert r.json()["details"][0]["field"] == "supervisor_id"


def test_create_employee_links_both_sides(client, technician, supervisor):
    r = client.post("/api/users", headers=auth_headers(technician), json=_new_user(supervisor_id=str(supervisor.id)))
    assert r.status_code == 201
    created = r.json()
    assert created["supervisor_id"] == str(supervisor.id)

    sup = client.get(f"/api/users/{supervisor.id}", headers=auth_headers(technician)).json()
    assert created["id"] in sup["supervised_employee_ids"]

    team = client.get(f"/api/users/team/{supervisor.id}", headers=auth_headers(supervisor)).json()["team"]
    assert [m["id"] for m in team] == [created["id"]]


def test_only_employees_take_a_supervisor(client, technician, supervisor):
    payload = _new_user(role="supervisor", email="lider@empresa.com.br", supervisor_id=str(supervisor.id))
    r = client.post("/api/users", headers=auth_headers(technician), json=payload)
    assert r.status_code == 400
    assert r.json()["details"][0]["field"] == "supervisor_id"

    sup = client.get(f"/api/users/{supervisor.id}", headers=auth_headers(technician)).json()
    assert sup["supervised_employee_ids"] == []


def test_leaving_employee_role_drops_supervisor_link(client, technician, employee, supervisor):
    r = client.put(f"/api/users/{employee.id}", headers=auth_headers(technician), json={"role": "supervisor"})
    assert r.status_code == 200
    assert r.json()["supervisor_id"] is None

    sup = client.get(f"/api/users/{supervisor.id}", headers=auth_headers(technician)).json()
    assert str(employee.id) not in sup["supervised_employee_ids"]

    bad = client.put(f"/api/users/{employee.id}", headers=auth_headers(technician), json={"supervisor_id": str(supervisor.id)})
    assert bad.status_code == 400


def test_duplicate_email_conflicts(client, technician, supervisor):
    r = client.post("/api/users", headers=auth_headers(technician), json=_new_user(email=supervisor.email, role="supervisor"))
    assert r.status_code == 409


def test_only_admin_creates_admins(client, technician, admin):
    payload = _new_user(role="admin", email="chefe@empresa.com.br", employee_id="A0009")
    assert client.post("/api/users", headers=auth_headers(technician), json=payload).status_code == 403
    assert client.post("/api/users", headers=auth_headers(admin), json=payload).status_code == 201


def test_moving_employee_between_supervisors(client, make_user, technician, employee, supervisor):
    other = make_user("supervisor")
    r = client.put(f"/api/users/{employee.id}", headers=auth_headers(technician), json={"supervisor_id": str(other.id)})
    assert r.status_code == 200

    old = client.get(f"/api/users/{supervisor.id}", headers=auth_headers(technician)).json()
    new = client.get(f"/api/users/{other.id}", headers=auth_headers(technician)).json()
    assert str(employee.id) not in old["supervised_employee_ids"]
    assert str(employee.id) in new["supervised_employee_ids"]


def test_supervisor_with_team_cannot_change_role(client, technician, employee, supervisor):
    r = client.put(f"/api/users/{supervisor.id}", headers=auth_headers(technician), json={"role": "safety_technician"})
    assert r.status_code == 422


def test_user_access_is_scoped(client, make_user, employee, supervisor):
    other_sup = make_user("supervisor", department="Manutenção")
    assert client.get(f"/api/users/{employee.id}", headers=auth_headers(supervisor)).status_code == 200
    assert client.get(f"/api/users/{employee.id}", headers=auth_headers(other_sup)).status_code == 403
    assert client.get(f"/api/users/team/{supervisor.id}", headers=auth_headers(other_sup)).status_code == 403
    assert client.get("/api/users", headers=auth_headers(supervisor)).status_code == 403


def test_listing_is_limited_to_own_department_for_technicians(client, technician, admin, employee):
    scoped = client.get("/api/users", headers=auth_headers(technician)).json()
    assert {u["department"] for u in scoped["items"]} == {technician.department}

    everyone = client.get("/api/users", headers=auth_headers(admin), params={"limit": 100}).json()
    assert everyone["pagination"]["total"] >= 4


def test_cannot_deactivate_self(client, technician):
    r = client.delete(f"/api/users/{technician.id}", headers=auth_headers(technician))
    assert r.status_code == 400


def test_dashboard_counts_scoped_data(client, employee, supervisor, checklist):
    client.post(
        "/api/executions",
        headers=auth_headers(employee),
        json={
            "checklist_id": str(checklist.id),
            "results": [{"checklist_item_id": checklist.items[0]["id"], "epi_type_id": checklist.items[0]["epi_type_id"], "status": "ok"}],
        },
    )
    stats = client.get("/api/reports/dashboard", headers=auth_headers(supervisor)).json()["stats"]
    assert stats["executions_in_progress"] == 1
    assert stats["executions_today"] == 1
    assert stats["total_epi_types"] == 1


def test_reports_require_supervisor_tier(client, employee, supervisor, technician):
    assert client.get("/api/reports/compliance", headers=auth_headers(employee)).status_code == 403
    assert client.get("/api/reports/compliance", headers=auth_headers(supervisor)).status_code == 200
    assert client.get("/api/reports/anomalies", headers=auth_headers(supervisor)).status_code == 200
    assert client.get("/api/reports/executions", headers=auth_headers(supervisor)).status_code == 200
    status = client.get("/api/reports/epi-status", headers=auth_headers(technician)).json()
    assert status["statistics"]["total"] == 0


def test_compliance_report_aggregates_finished_executions(client, employee, supervisor, checklist):
    item = checklist.items[0]
    e = client.post(
        "/api/executions",
        headers=auth_headers(employee),
        json={"checklist_id": str(checklist.id), "results": [{"checklist_item_id": item["id"], "epi_type_id": item["epi_type_id"], "status": "not_conform"}]},
    ).json()
    client.post(f"/api/executions/{e['id']}/complete", headers=auth_headers(employee), json={"signature_hash": "s"})

    report = client.get("/api/reports/compliance", headers=auth_headers(supervisor)).json()
    assert len(report["executions"]) == 1
    assert report["statistics"]["non_conform_items"] == 1
    assert report["statistics"]["compliance_rate"] == 0


def test_compliance_report_department_filter(client, admin, employee, checklist):
    item = checklist.items[0]
    e = client.post(
        "/api/executions",
        headers=auth_headers(employee),
        json={"checklist_id": str(checklist.id), "results": [{"checklist_item_id": item["id"], "epi_type_id": item["epi_type_id"], "status": "ok"}]},
    ).json()
    client.post(f"/api/executions/{e['id']}/complete", headers=auth_headers(employee), json={"signature_hash": "s"})

    headers = auth_headers(admin)
    assert len(client.get("/api/reports/compliance", headers=headers, params={"department": "Produção"}).json()["executions"]) == 1
    assert client.get("/api/reports/compliance", headers=headers, params={"department": "Manutenção"}).json()["executions"] == []
