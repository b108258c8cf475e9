"""
Tests for activity templates.

Covers:
    - create / update / delete with window, floor and assignment validation
    - unique template name per organisation (ConflictError, 409 over HTTP)
    - save-as-template copies floor/window/notes and the assigned rooms only
    - draft activity from a template, default assignments feeding publish
    - supervisor/admin only, organisation isolation
"""

from datetime import time

import pytest

from cleanops.core.exceptions import ConflictError, NotFoundError, ValidationError
from cleanops.models import db
from cleanops.models.activity import Activity, RoomTask
from cleanops.models.activity_template import ActivityTemplate
from cleanops.models.facility import Floor, Room
from cleanops.services import activity_lifecycle, room_task_lifecycle
from cleanops.services import activity_templates as svc
from cleanops.services.permission import Actor, PermissionDenied

API = "/api/v1"


@pytest.fixture()
def activity_template(supervisor, floor, rooms, worker):
    return svc.create_template(supervisor, {
        "name": "Weekday morning",
        "floor_id": floor.id,
        "window_start": "06:00",
        "window_end": "08:00",
        "notes": "Start with the restrooms",
        "default_assignments": [{"room_id": r.id, "assigned_to": worker.user_id} for r in rooms],
    })


class TestCreateTemplate:
    def test_create(self, activity_template, supervisor, rooms, worker):
        assert activity_template.created_by == supervisor.user_id
        assert activity_template.window_start == time(6, 0)
        assert activity_template.default_assignments == [
            {"room_id": rooms[0].id, "assigned_to": worker.user_id},
            {"room_id": rooms[1].id, "assigned_to": worker.user_id},
        ]

    def test_janitor_forbidden(self, worker, floor):
        with pytest.raises(PermissionDenied):
            svc.create_template(worker, {
                "name": "x", "floor_id": floor.id, "window_start": "06:00", "window_end": "07:00",
            })

    def test_window_must_be_ordered(self, supervisor, floor):
        with pytest.raises(ValidationError) as exc:
            svc.create_template(supervisor, {
                "name": "Late", "floor_id": floor.id, "window_start": "09:00", "window_end": "08:00",
            })
        assert "window_end" in exc.value.details

    def test_assignment_needs_worker(self, supervisor, floor, rooms):
        with pytest.raises(ValidationError):
            svc.create_template(supervisor, {
                "name": "Nobody", "floor_id": floor.id, "window_start": "06:00", "window_end": "07:00",
                "default_assignments": [{"room_id": rooms[0].id, "assigned_to": None}],
            })

    def test_assignment_room_must_be_on_floor(self, org, supervisor, floor, room_type, worker):
        lobby = Floor(org_id=org.id, building_name="HQ", floor_number=0, floor_name="Lobby")
        db.session.add(lobby)
        db.session.flush()
        elsewhere = Room(org_id=org.id, floor_id=lobby.id, room_type_id=room_type.id, name="WC 0.01")
        db.session.add(elsewhere)
        db.session.commit()

        with pytest.raises(ValidationError):
            svc.create_template(supervisor, {
                "name": "Wrong floor", "floor_id": floor.id,
                "window_start": "06:00", "window_end": "07:00",
                "default_assignments": [{"room_id": elsewhere.id, "assigned_to": worker.user_id}],
            })

    def test_floor_of_other_org_is_not_found(self, supervisor, other_org):
        foreign = Floor(org_id=other_org.id, building_name="Annex", floor_number=1)
        db.session.add(foreign)
        db.session.commit()
        with pytest.raises(NotFoundError):
            svc.create_template(supervisor, {
                "name": "Annex", "floor_id": foreign.id, "window_start": "06:00", "window_end": "07:00",
            })

    def test_duplicate_name_conflicts(self, activity_template, supervisor, floor):
        with pytest.raises(ConflictError):
            svc.create_template(supervisor, {
                "name": "Weekday morning", "floor_id": floor.id,
                "window_start": "10:00", "window_end": "11:00",
            })
        assert ActivityTemplate.query.count() == 1

    def test_same_name_allowed_in_other_org(self, activity_template, other_org):
        foreign = Floor(org_id=other_org.id, building_name="Annex", floor_number=1)
        db.session.add(foreign)
        db.session.commit()
        outsider = Actor(user_id="sup-x", role="supervisor", org_id=other_org.id)
        copy = svc.create_template(outsider, {
            "name": "Weekday morning", "floor_id": foreign.id,
            "window_start": "06:00", "window_end": "07:00",
        })
        assert copy.id != activity_template.id

    def test_unique_constraint_backstop(self, monkeypatch, activity_template, supervisor, floor):
        """A twin inserted between the name check and the commit still surfaces as a conflict."""
        real_name_taken = svc._name_taken
        calls = {"n": 0}

        def stale_name_taken(org_id, name, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                return False
            return real_name_taken(org_id, name, **kwargs)

        monkeypatch.setattr(svc, "_name_taken", stale_name_taken)
        with pytest.raises(ConflictError):
            svc.create_template(supervisor, {
                "name": "Weekday morning", "floor_id": floor.id,
                "window_start": "10:00", "window_end": "11:00",
            })
        assert ActivityTemplate.query.count() == 1


class TestUpdateDeleteTemplate:
    def test_update_fields(self, activity_template, supervisor, rooms, other_worker):
        updated = svc.update_template(activity_template.id, supervisor, {
            "window_end": "09:00",
            "notes": None,
            "default_assignments": [{"room_id": rooms[1].id, "assigned_to": other_worker.user_id}],
        })
        assert updated.window_end == time(9, 0)
        assert updated.notes is None
        assert updated.default_assignments == [{"room_id": rooms[1].id, "assigned_to": other_worker.user_id}]

    def test_bad_window_leaves_template_untouched(self, activity_template, supervisor):
        with pytest.raises(ValidationError):
            svc.update_template(activity_template.id, supervisor, {"name": "Renamed", "window_start": "08:30"})
        stored = db.session.get(ActivityTemplate, activity_template.id)
        assert (stored.name, stored.window_start) == ("Weekday morning", time(6, 0))

    def test_rename_to_taken_name_conflicts(self, activity_template, supervisor, floor):
        other = svc.create_template(supervisor, {
            "name": "Evening", "floor_id": floor.id, "window_start": "18:00", "window_end": "19:00",
        })
        with pytest.raises(ConflictError):
            svc.update_template(other.id, supervisor, {"name": "Weekday morning"})
        kept = svc.update_template(activity_template.id, supervisor, {"name": "Weekday morning"})
        assert kept.name == "Weekday morning"

    def test_delete(self, activity_template, supervisor):
        svc.delete_template(activity_template.id, supervisor)
        assert db.session.get(ActivityTemplate, activity_template.id) is None

    def test_other_org_cannot_delete(self, activity_template, other_org):
        outsider = Actor(user_id="sup-x", role="supervisor", org_id=other_org.id)
        with pytest.raises(NotFoundError):
            svc.delete_template(activity_template.id, outsider)


class TestSaveActivityAsTemplate:
    def test_copies_activity_and_assigned_rooms(self, published, supervisor, worker, rooms):
        activity_id, (t1, t2) = published
        assert room_task_lifecycle.assign_task(t2, supervisor, None).ok

        saved = svc.save_activity_as_template(activity_id, supervisor, "From Monday")

        activity = db.session.get(Activity, activity_id)
        assert saved.floor_id == activity.floor_id
        assert (saved.window_start, saved.window_end) == (activity.window_start, activity.window_end)
        assert saved.default_assignments == [{"room_id": rooms[0].id, "assigned_to": worker.user_id}]

    def test_draft_activity_has_no_assignments(self, draft_activity, supervisor):
        saved = svc.save_activity_as_template(draft_activity.id, supervisor, "Empty round")
        assert saved.default_assignments == []

    def test_name_required(self, draft_activity, supervisor):
        with pytest.raises(ValidationError):
            svc.save_activity_as_template(draft_activity.id, supervisor, "  ")

    def test_janitor_forbidden(self, draft_activity, worker):
        with pytest.raises(PermissionDenied):
            svc.save_activity_as_template(draft_activity.id, worker, "Mine")


class TestActivityFromTemplate:
    def test_creates_draft_with_template_values(self, activity_template, supervisor, rooms, worker):
        activity, assignments = svc.create_activity_from_template(
            activity_template.id, supervisor, {"scheduled_date": "2026-03-09"},
        )
        assert activity.status == "draft"
        assert activity.name == "Weekday morning"
        assert activity.notes == "Start with the restrooms"
        assert activity.window_start == time(6, 0)
        assert activity.scheduled_date.isoformat() == "2026-03-09"
        assert assignments == activity_template.default_assignments

    def test_default_assignments_publish(self, activity_template, supervisor, template):
        activity, assignments = svc.create_activity_from_template(
            activity_template.id, supervisor, {"scheduled_date": "2026-03-09", "name": "Monday"},
        )
        result = activity_lifecycle.publish_activity(activity.id, assignments, supervisor)
        assert result.ok, result.message
        assert RoomTask.query.filter_by(activity_id=activity.id).count() == 2

    def test_inactive_rooms_are_dropped(self, activity_template, supervisor, rooms):
        rooms[1].is_active = False
        db.session.commit()
        _, assignments = svc.create_activity_from_template(
            activity_template.id, supervisor, {"scheduled_date": "2026-03-09"},
        )
        assert [a["room_id"] for a in assignments] == [rooms[0].id]

    def test_scheduled_date_required(self, activity_template, supervisor):
        with pytest.raises(ValidationError):
            svc.create_activity_from_template(activity_template.id, supervisor, {})
        assert Activity.query.count() == 0


class TestActivityTemplateEndpoints:
    def test_crud_and_instantiate(self, client, auth_headers, supervisor, floor, rooms, worker):
        h = auth_headers(supervisor)
        res = client.post(f"{API}/activity-templates", headers=h, json={
            "name": "Night round", "floor_id": floor.id,
            "window_start": "22:00", "window_end": "23:30",
            "default_assignments": [{"room_id": rooms[0].id, "assigned_to": worker.user_id}],
        })
        assert res.status_code == 201, res.get_json()
        template_id = res.get_json()["id"]

        res = client.get(f"{API}/activity-templates", headers=h)
        assert [t["id"] for t in res.get_json()["items"]] == [template_id]

        res = client.put(f"{API}/activity-templates/{template_id}", headers=h, json={"window_end": "23:45"})
        assert res.status_code == 200
        assert res.get_json()["window_end"] == "23:45"

        res = client.post(f"{API}/activity-templates/{template_id}/activities", headers=h,
                          json={"scheduled_date": "2026-03-10"})
        assert res.status_code == 201
        body = res.get_json()
        assert body["activity"]["status"] == "draft"
        assert body["activity"]["window_end"] == "23:45"
        assert body["default_assignments"] == [{"room_id": rooms[0].id, "assigned_to": worker.user_id}]

        res = client.delete(f"{API}/activity-templates/{template_id}", headers=h)
        assert res.status_code == 200
        assert client.get(f"{API}/activity-templates/{template_id}", headers=h).status_code == 404

    def test_duplicate_name_is_409(self, client, auth_headers, supervisor, activity_template, floor):
        res = client.post(f"{API}/activity-templates", headers=auth_headers(supervisor), json={
            "name": "Weekday morning", "floor_id": floor.id,
            "window_start": "06:00", "window_end": "07:00",
        })
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_save_as_template(self, client, auth_headers, supervisor, published, worker, rooms):
        activity_id, _ = published
        res = client.post(f"{API}/activities/{activity_id}/save-as-template",
                          headers=auth_headers(supervisor), json={"name": "Copy"})
        assert res.status_code == 201
        assert len(res.get_json()["default_assignments"]) == 2

    def test_janitor_forbidden(self, client, auth_headers, worker, activity_template):
        res = client.get(f"{API}/activity-templates", headers=auth_headers(worker))
        assert res.status_code == 403

    def test_missing_scheduled_date_is_400(self, client, auth_headers, supervisor, activity_template):
        res = client.post(f"{API}/activity-templates/{activity_template.id}/activities",
                          headers=auth_headers(supervisor), json={})
        assert res.status_code == 400
