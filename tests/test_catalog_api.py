from datetime import timedelta

from conftest import auth_headers
from epitrack.services.time_rules import now_utc


def _epi_payload(**overrides):
    payload = {
        "name": "Óculos de Proteção",
        "category": "protecao_visual",
        "description": "Óculos ampla visão",
        "technical_standard": "ANSI Z87.1",
        "manufacturer": "Kalipso",
        "ca_number": "CA-11268",
        "ca_expiry_date": (now_utc() + timedelta(days=200)).isoformat(),
        "lifespan_months": 12,
        "inspection_criteria": [{"criterion": "Lente", "description": "Sem riscos"}],
    }
    payload.update(overrides)
    return payload


def test_create_epi_type_requires_permission(client, supervisor, technician):
    assert client.post("/api/epi-types", headers=auth_headers(supervisor), json=_epi_payload()).status_code == 403
    r = client.post("/api/epi-types", headers=auth_headers(technician), json=_epi_payload())
    assert r.status_code == 201
    body = r.json()
    assert body["is_expired"] is False
    assert body["days_until_expiry"] >= 199


def test_past_ca_expiry_is_rejected(client, technician):
    past = (now_utc() - timedelta(days=1)).isoformat()
    r = client.post("/api/epi-types", headers=auth_headers(technician), json=_epi_payload(ca_expiry_date=past))
    assert r.status_code == 422
    assert r.json()["details"][0]["field"] == "ca_expiry_date"


def test_duplicate_ca_number_conflicts(client, technician, epi_type):
    r = client.post("/api/epi-types", headers=auth_headers(technician), json=_epi_payload(ca_number=epi_type.ca_number))
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"


def test_expiring_soon_and_expired_lists(client, technician, employee):
    headers = auth_headers(technician)
    soon = (now_utc() + timedelta(days=10)).isoformat()
    client.post("/api/epi-types", headers=headers, json=_epi_payload(ca_number="CA-1", ca_expiry_date=soon))
    client.post("/api/epi-types", headers=headers, json=_epi_payload(ca_number="CA-2"))

    listed = client.get("/api/epi-types/expiring-soon", headers=auth_headers(employee)).json()["epi_types"]
    assert [e["ca_number"] for e in listed] == ["CA-1"]
    assert client.get("/api/epi-types/expired", headers=auth_headers(employee)).json()["epi_types"] == []

    paged = client.get("/api/epi-types", headers=auth_headers(employee), params={"expiring_soon": "true"}).json()
    assert paged["pagination"]["total"] == 1


def test_deactivate_epi_type(client, technician, epi_type):
    r = client.delete(f"/api/epi-types/{epi_type.id}", headers=auth_headers(technician))
    assert r.status_code == 200
    assert client.get(f"/api/epi-types/{epi_type.id}", headers=auth_headers(technician)).json()["is_active"] is False


def test_categories_have_labels(client, employee):
    categories = client.get("/api/epi-types/categories", headers=auth_headers(employee)).json()["categories"]
    assert {"value", "label"} <= set(categories[0])


def _checklist_payload(epi_type, **overrides):
    payload = {
        "name": "Inspeção Semanal",
        "description": "Rotina semanal",
        "type": "weekly",
        "department": "Produção",
        "frequency_days": 7,
        "items": [{"epi_type_id": str(epi_type.id), "order": 0}],
    }
    payload.update(overrides)
    return payload


def test_checklist_items_copy_catalog_criteria(client, technician, epi_type):
    r = client.post("/api/checklists", headers=auth_headers(technician), json=_checklist_payload(epi_type))
    assert r.status_code == 201
    item = r.json()["items"][0]
    assert item["id"]
    assert [c["criterion"] for c in item["criteria"]] == ["Casco íntegro"]
    assert r.json()["version"] == 1


def test_catalog_edits_do_not_reach_existing_checklists(client, technician, epi_type):
    headers = auth_headers(technician)
    c = client.post("/api/checklists", headers=headers, json=_checklist_payload(epi_type)).json()

    r = client.put(
        f"/api/epi-types/{epi_type.id}",
        headers=headers,
        json={"inspection_criteria": [{"criterion": "Jugular", "description": "Presa ao casco"}]},
    )
    assert r.status_code == 200
    assert [x["criterion"] for x in r.json()["inspection_criteria"]] == ["Jugular"]

    stored = client.get(f"/api/checklists/{c['id']}", headers=headers).json()
    assert [x["criterion"] for x in stored["items"][0]["criteria"]] == ["Casco íntegro"]
    assert stored["version"] == 1


def test_checklist_version_bumps_only_on_item_changes(client, technician, epi_type):
    headers = auth_headers(technician)
    c = client.post("/api/checklists", headers=headers, json=_checklist_payload(epi_type)).json()
    url = f"/api/checklists/{c['id']}"
    item = c["items"][0]

    notes_only = client.put(url, headers=headers, json={"notes": "Revisado"}).json()
    assert notes_only["version"] == 1

    same_items = client.put(url, headers=headers, json={"items": [{"id": item["id"], "epi_type_id": item["epi_type_id"], "order": 0}]}).json()
    assert same_items["version"] == 1
    assert same_items["items"][0]["id"] == item["id"]

    changed = client.put(
        url,
        headers=headers,
        json={"items": [{"id": item["id"], "epi_type_id": item["epi_type_id"], "order": 0, "is_required": False}]},
    ).json()
    assert changed["version"] == 2
    assert changed["items"][0]["id"] == item["id"]


def test_checklist_expiry_must_follow_effective_date(client, technician, epi_type):
    today = now_utc()
    payload = _checklist_payload(epi_type, effective_date=today.isoformat(), expiry_date=today.isoformat())
    r = client.post("/api/checklists", headers=auth_headers(technician), json=payload)
    assert r.status_code == 422


def test_checklist_name_is_unique(client, technician, epi_type):
    headers = auth_headers(technician)
    assert client.post("/api/checklists", headers=headers, json=_checklist_payload(epi_type)).status_code == 201
    assert client.post("/api/checklists", headers=headers, json=_checklist_payload(epi_type)).status_code == 409


def test_checklist_approval_records_notes(client, technician, checklist):
    r = client.post(f"/api/checklists/{checklist.id}/approve", headers=auth_headers(technician), json={"notes": "Aprovado"})
    assert r.status_code == 200
    assert r.json()["approved_by"] == str(technician.id)
    assert r.json()["approval_notes"] == "Aprovado"


def test_available_checklists_follow_department(client, make_user, employee, checklist):
    mine = client.get("/api/checklists/available", headers=auth_headers(employee)).json()["checklists"]
    assert [c["id"] for c in mine] == [str(checklist.id)]
    assert mine[0]["next_execution_date"]

    sup = make_user("supervisor", department="Manutenção")
    other = make_user("employee", department="Manutenção", supervisor=sup)
    assert client.get("/api/checklists/available", headers=auth_headers(other)).json()["checklists"] == []
    assert client.get(f"/api/checklists/{checklist.id}", headers=auth_headers(other)).status_code == 403
