"""
Tests for checklist resolution and snapshotting.

Covers:
    - Override beats room-type default
    - Inactive override is ignored
    - NoChecklistConfigured when nothing applies
    - Snapshot is ordered and decoupled from later template edits
"""

import pytest

from cleanops.models import db
from cleanops.models.activity import RoomTask
from cleanops.models.checklist import ChecklistItem, ChecklistTemplate, RoomChecklistOverride
from cleanops.models.facility import Room, RoomType
from cleanops.services.checklist_resolver import NoChecklistConfigured, build_snapshot, resolve


def _override_template(org, *descriptions):
    t = ChecklistTemplate(org_id=org.id, name="Executive WC")
    for order, desc in enumerate(descriptions, start=1):
        t.items.append(ChecklistItem(org_id=org.id, description=desc, item_order=order))
    db.session.add(t)
    db.session.commit()
    return t


class TestResolve:
    def test_room_type_default(self, rooms, template):
        assert resolve(rooms[0]).id == template.id

    def test_override_wins(self, org, rooms, template):
        special = _override_template(org, "Polish taps")
        db.session.add(RoomChecklistOverride(org_id=org.id, room_id=rooms[0].id, template_id=special.id))
        db.session.commit()

        assert resolve(rooms[0]).id == special.id
        assert resolve(rooms[1]).id == template.id

    def test_inactive_override_falls_back_to_default(self, org, rooms, template):
        special = _override_template(org, "Polish taps")
        db.session.add(RoomChecklistOverride(org_id=org.id, room_id=rooms[0].id,
                                             template_id=special.id, is_active=False))
        db.session.commit()

        assert resolve(rooms[0]).id == template.id

    def test_no_default_raises(self, org, floor):
        storage = RoomType(org_id=org.id, name="Storage")
        db.session.add(storage)
        db.session.flush()
        room = Room(org_id=org.id, floor_id=floor.id, room_type_id=storage.id, name="Store 1")
        db.session.add(room)
        db.session.commit()

        with pytest.raises(NoChecklistConfigured) as exc_info:
            resolve(room)
        assert exc_info.value.room_id == room.id
        assert exc_info.value.room_type_id == storage.id

    def test_room_without_type_raises(self, org, floor, template):
        room = Room(org_id=org.id, floor_id=floor.id, name="Corridor")
        db.session.add(room)
        db.session.commit()

        with pytest.raises(NoChecklistConfigured):
            resolve(room)


class TestSnapshot:
    def test_snapshot_is_ordered_copy(self, template):
        snapshot = build_snapshot(template)
        assert [i["description"] for i in snapshot] == ["Empty bins", "Mop floor", "Check supplies"]
        assert snapshot[1]["requires_photo"] is True
        assert snapshot[2]["requires_note"] is True
        assert [i["order"] for i in snapshot] == [1, 2, 3]

    def test_template_edit_does_not_touch_published_task(self, published, template):
        _, task_ids = published
        template.items[0].description = "Empty AND wash bins"
        template.items.append(ChecklistItem(org_id=template.org_id, description="New step", item_order=4))
        db.session.commit()

        task = db.session.get(RoomTask, task_ids[0])
        assert [i["description"] for i in task.checklist_snapshot] == [
            "Empty bins", "Mop floor", "Check supplies",
        ]

    def test_snapshot_cannot_be_reassigned(self, published):
        _, task_ids = published
        task = db.session.get(RoomTask, task_ids[0])
        with pytest.raises(ValueError):
            task.checklist_snapshot = []
