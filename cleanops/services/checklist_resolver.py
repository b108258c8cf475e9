"""
Checklist Resolver.

Decides which checklist template applies to a room and turns it into the
frozen item list a room task carries for its whole life.

Precedence:
    1. active RoomChecklistOverride for the room
    2. template flagged is_default for the room's room type
    3. NoChecklistConfigured

Called once per room task, at activity publish time. The snapshot is a copy:
editing or deleting template items afterwards does not touch tasks that are
already in flight.
"""

import logging

from sqlalchemy import select

from cleanops.models import db
from cleanops.models.checklist import ChecklistTemplate, RoomChecklistOverride
from cleanops.models.facility import Room

logger = logging.getLogger(__name__)


class NoChecklistConfigured(Exception):
    """Raised when neither an override nor a room-type default exists for a room."""

    def __init__(self, room_id: int, room_type_id: int | None = None):
        msg = f"No checklist configured for room {room_id}"
        if room_type_id is not None:
            msg += f" (room type {room_type_id} has no default template)"
        super().__init__(msg)
        self.room_id = room_id
        self.room_type_id = room_type_id


def resolve(room: Room) -> ChecklistTemplate:
    """Return the checklist template that applies to ``room``.

    Raises:
        NoChecklistConfigured: nothing applies.
    """
    override = db.session.execute(
        select(RoomChecklistOverride).where(
            RoomChecklistOverride.room_id == room.id,
            RoomChecklistOverride.org_id == room.org_id,
            RoomChecklistOverride.is_active.is_(True),
        )
    ).scalar_one_or_none()
    if override is not None and override.template.org_id == room.org_id:
        logger.debug("Room %s uses override template %s", room.id, override.template_id)
        return override.template

    if room.room_type_id is not None:
        default = db.session.execute(
            select(ChecklistTemplate).where(
                ChecklistTemplate.org_id == room.org_id,
                ChecklistTemplate.room_type_id == room.room_type_id,
                ChecklistTemplate.is_default.is_(True),
            ).order_by(ChecklistTemplate.id)
        ).scalars().first()
        if default is not None:
            return default

    raise NoChecklistConfigured(room.id, room.room_type_id)


def build_snapshot(template: ChecklistTemplate) -> list[dict]:
    """Copy a template's items (ordered) into snapshot dicts."""
    items = sorted(template.items, key=lambda i: (i.item_order, i.id))
    return [item.to_snapshot() for item in items]
