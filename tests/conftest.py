"""
Shared pytest fixtures for the Cleaning Operations Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org / floor / room_type / rooms / template: facility + checklist rows
    - supervisor / worker / other_worker / admin / client_user: Actors
    - draft_activity / published: activity in draft, and published with 2 tasks
    - finish_task: drive a task from not_started to done with evidence
    - auth_headers: Bearer header for an Actor
"""

from datetime import date, time

import pytest

from cleanops import create_app
from cleanops.models import db as _db
from cleanops.models.checklist import ChecklistItem, ChecklistTemplate
from cleanops.models.facility import Floor, Organisation, Room, RoomType
from cleanops.services import activity_lifecycle, room_task_lifecycle
from cleanops.services.jwt_service import generate_access_token
from cleanops.services.permission import Actor


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Facility & checklist fixtures ────────────────────────────────────────


@pytest.fixture()
def org():
    o = Organisation(name="Sparkle Facilities", slug="sparkle", pass_threshold=80)
    _db.session.add(o)
    _db.session.commit()
    return o


@pytest.fixture()
def other_org():
    o = Organisation(name="Other Co", slug="other-co", pass_threshold=90)
    _db.session.add(o)
    _db.session.commit()
    return o


@pytest.fixture()
def floor(org):
    f = Floor(org_id=org.id, building_name="HQ", floor_number=3, floor_name="Third")
    _db.session.add(f)
    _db.session.commit()
    return f


@pytest.fixture()
def room_type(org):
    rt = RoomType(org_id=org.id, name="Restroom")
    _db.session.add(rt)
    _db.session.commit()
    return rt


@pytest.fixture()
def rooms(org, floor, room_type):
    """Two active restrooms on the floor."""
    result = [
        Room(org_id=org.id, floor_id=floor.id, room_type_id=room_type.id, name="WC 3.01"),
        Room(org_id=org.id, floor_id=floor.id, room_type_id=room_type.id, name="WC 3.02"),
    ]
    _db.session.add_all(result)
    _db.session.commit()
    return result


@pytest.fixture()
def template(org, room_type):
    """Default restroom checklist: one plain, one photo, one note item."""
    t = ChecklistTemplate(org_id=org.id, name="Restroom standard",
                          room_type_id=room_type.id, is_default=True)
    t.items.extend([
        ChecklistItem(org_id=org.id, description="Empty bins", item_order=1),
        ChecklistItem(org_id=org.id, description="Mop floor", item_order=2, requires_photo=True),
        ChecklistItem(org_id=org.id, description="Check supplies", item_order=3, requires_note=True),
    ])
    _db.session.add(t)
    _db.session.commit()
    return t


# ── Actors ───────────────────────────────────────────────────────────────


@pytest.fixture()
def supervisor(org):
    return Actor(user_id="sup-1", role="supervisor", org_id=org.id)


@pytest.fixture()
def admin(org):
    return Actor(user_id="admin-1", role="admin", org_id=org.id)


@pytest.fixture()
def worker(org):
    return Actor(user_id="worker-1", role="janitor", org_id=org.id)


@pytest.fixture()
def other_worker(org):
    return Actor(user_id="worker-2", role="janitor", org_id=org.id)


@pytest.fixture()
def client_user(org):
    return Actor(user_id="client-1", role="client", org_id=org.id)


# ── Lifecycle fixtures ───────────────────────────────────────────────────


@pytest.fixture()
def draft_activity(supervisor, floor):
    return activity_lifecycle.create_activity(supervisor, {
        "floor_id": floor.id,
        "name": "Morning round",
        "scheduled_date": date(2026, 3, 2).isoformat(),
        "window_start": "06:00",
        "window_end": "08:30",
    })


@pytest.fixture()
def published(draft_activity, rooms, template, supervisor, worker):
    """Publish the draft with both rooms assigned to ``worker``.

    Returns (activity_id, [task_id_room1, task_id_room2]).
    """
    result = activity_lifecycle.publish_activity(
        draft_activity.id,
        [{"room_id": r.id, "assigned_to": worker.user_id} for r in rooms],
        supervisor,
    )
    assert result.ok, result.message
    return draft_activity.id, result.details["task_ids"]


@pytest.fixture()
def finish_task(template):
    """Return a callable that starts a task and completes it ``done`` with evidence."""
    items = {i.description: i.id for i in template.items}

    def _finish(task_id, actor):
        assert room_task_lifecycle.start_task(task_id, actor).ok
        assert room_task_lifecycle.record_item_response(
            task_id, items["Empty bins"], actor, completed=True).ok
        assert room_task_lifecycle.record_item_response(
            task_id, items["Mop floor"], actor, completed=True).ok
        assert room_task_lifecycle.attach_item_photo(
            task_id, items["Mop floor"], actor, "s3://photos/floor.jpg").ok
        assert room_task_lifecycle.record_item_response(
            task_id, items["Check supplies"], actor, completed=True, note="Soap refilled").ok
        result = room_task_lifecycle.complete_task(task_id, actor, "done")
        assert result.ok, result.message
        return result

    return _finish


@pytest.fixture()
def auth_headers():
    """Return a callable building a Bearer header for an Actor."""

    def _headers(actor):
        token = generate_access_token(actor.user_id, actor.role, actor.org_id)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def window():
    return time(6, 0), time(8, 30)
