"""
HTTP tests for deficiencies, checklists, notifications, reports, settings
and health endpoints.
"""

import json
import logging

import pytest

from cleanops.middleware.logging_config import JSONFormatter
from cleanops.services import room_task_lifecycle as tasks

API = "/api/v1"


@pytest.fixture()
def failed_task(published, supervisor, worker, finish_task):
    _, (t1, _) = published
    finish_task(t1, worker)
    result = tasks.inspect_task(t1, supervisor, "inspected_fail", "Floor sticky")
    return t1, result.details["deficiency_id"]


class TestHealth:
    def test_ready_without_token(self, client):
        res = client.get(f"{API}/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_live_checks_database(self, client):
        res = client.get(f"{API}/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"


class TestDeficiencyEndpoints:
    def test_list_and_get(self, client, auth_headers, supervisor, failed_task):
        _, deficiency_id = failed_task
        res = client.get(f"{API}/deficiencies?status=open", headers=auth_headers(supervisor))
        assert [d["id"] for d in res.get_json()["items"]] == [deficiency_id]

        res = client.get(f"{API}/deficiencies/{deficiency_id}", headers=auth_headers(supervisor))
        assert res.get_json()["from_inspection"] is True

    def test_bad_status_filter(self, client, auth_headers, supervisor):
        res = client.get(f"{API}/deficiencies?status=closed", headers=auth_headers(supervisor))
        assert res.status_code == 400

    def test_duplicate_open_is_conflict(self, client, auth_headers, supervisor, failed_task):
        t1, deficiency_id = failed_task
        res = client.post(f"{API}/tasks/{t1}/deficiencies", headers=auth_headers(supervisor),
                          json={"description": "Another"})
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "duplicate_open_deficiency"
        assert body["details"]["deficiency_id"] == deficiency_id

    def test_manual_open(self, client, auth_headers, worker, published):
        _, (_, t2) = published
        res = client.post(f"{API}/tasks/{t2}/deficiencies", headers=auth_headers(worker),
                          json={"description": "Door handle loose", "severity": "low"})
        assert res.status_code == 201
        assert res.get_json()["severity"] == "low"

    def test_manual_open_default_severity_from_config(self, app, monkeypatch, client, auth_headers,
                                                      worker, published):
        monkeypatch.setitem(app.config, "DEFAULT_DEFICIENCY_SEVERITY", "high")
        _, (_, t2) = published
        res = client.post(f"{API}/tasks/{t2}/deficiencies", headers=auth_headers(worker),
                          json={"description": "Light flickers"})
        assert res.status_code == 201
        assert res.get_json()["severity"] == "high"

    def test_work_and_resolve(self, client, auth_headers, worker, supervisor, failed_task):
        _, deficiency_id = failed_task
        w = auth_headers(worker)
        assert client.post(f"{API}/deficiencies/{deficiency_id}/start", headers=w).status_code == 200

        res = client.post(f"{API}/deficiencies/{deficiency_id}/resolve", headers=w, json={})
        assert res.status_code == 400

        res = client.post(f"{API}/deficiencies/{deficiency_id}/resolve", headers=w,
                          json={"note": "Scrubbed twice"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "resolved"

        res = client.post(f"{API}/deficiencies/{deficiency_id}/resolve", headers=w,
                          json={"note": "Again"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "already_resolved"

    def test_reassign(self, client, auth_headers, supervisor, worker, other_worker, failed_task):
        _, deficiency_id = failed_task
        res = client.put(f"{API}/deficiencies/{deficiency_id}/assignment", headers=auth_headers(worker),
                         json={"assigned_to": other_worker.user_id})
        assert res.status_code == 403

        res = client.put(f"{API}/deficiencies/{deficiency_id}/assignment",
                         headers=auth_headers(supervisor), json={"assigned_to": other_worker.user_id})
        assert res.status_code == 200
        assert res.get_json()["assigned_to"] == other_worker.user_id


class TestChecklistEndpoints:
    def test_janitor_cannot_manage(self, client, auth_headers, worker):
        res = client.post(f"{API}/checklists", headers=auth_headers(worker), json={"name": "x"})
        assert res.status_code == 403

    def test_create_add_reorder(self, client, auth_headers, supervisor, room_type):
        s = auth_headers(supervisor)
        res = client.post(f"{API}/checklists", headers=s, json={
            "name": "Office", "room_type_id": room_type.id,
            "items": [{"description": "Vacuum"}, {"description": "Dust desks"}],
        })
        assert res.status_code == 201
        template = res.get_json()
        assert template["item_count"] == 2

        res = client.post(f"{API}/checklists/{template['id']}/items", headers=s,
                          json={"description": "Water plants", "requires_photo": True})
        assert res.status_code == 201
        assert res.get_json()["item_order"] == 3

        ids = [i["id"] for i in client.get(f"{API}/checklists/{template['id']}", headers=s)
               .get_json()["items"]]
        res = client.put(f"{API}/checklists/{template['id']}/items/order", headers=s,
                         json={"item_ids": ids[::-1]})
        assert res.status_code == 200
        assert [i["description"] for i in res.get_json()["items"]] == [
            "Water plants", "Dust desks", "Vacuum",
        ]

        res = client.put(f"{API}/checklists/{template['id']}/items/order", headers=s,
                         json={"item_ids": ids[:1]})
        assert res.status_code == 400

    def test_room_checklist_and_override(self, client, auth_headers, supervisor, org, rooms, template):
        s = auth_headers(supervisor)
        res = client.get(f"{API}/rooms/{rooms[0].id}/checklist", headers=s)
        assert res.get_json()["id"] == template.id

        created = client.post(f"{API}/checklists", headers=s,
                              json={"name": "VIP", "items": [{"description": "Flowers"}]}).get_json()
        res = client.put(f"{API}/rooms/{rooms[0].id}/checklist", headers=s,
                         json={"template_id": created["id"]})
        assert res.status_code == 200
        assert client.get(f"{API}/rooms/{rooms[0].id}/checklist", headers=s).get_json()["id"] == created["id"]

        res = client.delete(f"{API}/rooms/{rooms[0].id}/checklist", headers=s)
        assert res.get_json() == {"deleted": True}

    def test_room_without_checklist(self, client, auth_headers, supervisor, rooms):
        res = client.get(f"{API}/rooms/{rooms[0].id}/checklist", headers=auth_headers(supervisor))
        assert res.status_code == 404


class TestNotificationEndpoints:
    def test_inbox(self, client, auth_headers, worker, published):
        h = auth_headers(worker)
        res = client.get(f"{API}/notifications", headers=h)
        body = res.get_json()
        assert body["total"] == 1
        assert body["unread_count"] == 1
        notif_id = body["items"][0]["id"]

        res = client.patch(f"{API}/notifications/{notif_id}/read", headers=h)
        assert res.status_code == 200
        assert client.get(f"{API}/notifications/unread-count", headers=h).get_json() == {"unread_count": 0}

    def test_cannot_read_someone_elses(self, client, auth_headers, worker, other_worker, published):
        notif_id = client.get(f"{API}/notifications", headers=auth_headers(worker)).get_json()["items"][0]["id"]
        res = client.patch(f"{API}/notifications/{notif_id}/read", headers=auth_headers(other_worker))
        assert res.status_code == 404

    def test_mark_all_read(self, client, auth_headers, worker, failed_task):
        h = auth_headers(worker)
        res = client.post(f"{API}/notifications/mark-all-read", headers=h)
        assert res.get_json()["marked_read"] == 2
        assert client.get(f"{API}/notifications?unread_only=true", headers=h).get_json()["total"] == 0


class TestReportsAndSettings:
    def test_client_can_view_reports(self, client, auth_headers, client_user, failed_task):
        res = client.get(f"{API}/reports/summary", headers=auth_headers(client_user))
        assert res.status_code == 200
        assert res.get_json()["open_deficiencies"] == 1

        res = client.get(f"{API}/reports/workers?date_from=2026-03-01", headers=auth_headers(client_user))
        assert res.get_json()["items"][0]["worker"] == "worker-1"

    def test_janitor_cannot_view_reports(self, client, auth_headers, worker):
        assert client.get(f"{API}/reports/floors", headers=auth_headers(worker)).status_code == 403

    def test_buildings(self, client, auth_headers, supervisor, failed_task):
        res = client.get(f"{API}/reports/buildings", headers=auth_headers(supervisor))
        assert res.get_json()["items"][0]["building_name"] == "HQ"

    def test_settings(self, client, auth_headers, admin, supervisor):
        res = client.get(f"{API}/settings", headers=auth_headers(supervisor))
        assert res.get_json()["pass_threshold"] == 80

        res = client.put(f"{API}/settings", headers=auth_headers(supervisor), json={"pass_threshold": 70})
        assert res.status_code == 403

        res = client.put(f"{API}/settings", headers=auth_headers(admin), json={"pass_threshold": 120})
        assert res.status_code == 400

        res = client.put(f"{API}/settings", headers=auth_headers(admin), json={"pass_threshold": 70})
        assert res.status_code == 200
        assert res.get_json()["pass_threshold"] == 70


class TestRequestLogging:
    def test_request_record_carries_timing_fields(self, caplog, client, auth_headers, supervisor):
        caplog.set_level(logging.DEBUG, logger="cleanops.middleware.timing")
        res = client.get(f"{API}/activities", headers=auth_headers(supervisor))
        assert res.status_code == 200
        assert "X-Request-ID" in res.headers

        record = next(r for r in caplog.records if r.name == "cleanops.middleware.timing")
        entry = json.loads(JSONFormatter().format(record))
        assert entry["path"] == f"{API}/activities"
        assert entry["status"] == 200
        assert entry["duration_ms"] >= 0
        assert entry["request_id"] == res.headers["X-Request-ID"]
        assert (entry["org_id"], entry["user_id"]) == (supervisor.org_id, supervisor.user_id)
        assert "remote_addr" in entry
