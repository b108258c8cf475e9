"""
Activity Templates — Service Layer.

Recurring cleaning rounds are stamped out from templates:
    - CRUD:          create / update / delete, list per organisation
    - save-as:       capture an existing activity's floor, window, notes and
                     current room assignments as a new template
    - instantiate:   create a draft activity from a template; the template's
                     default assignments are returned for the publish step

All operations require the ``activity_template_manage`` permission and are
scoped to the actor's organisation. Template names are unique per
organisation (ConflictError).
"""

import logging

from sqlalchemy.exc import IntegrityError

from cleanops.core.exceptions import ConflictError, ValidationError
from cleanops.models import db
from cleanops.models.activity import Activity, RoomTask
from cleanops.models.activity_template import ActivityTemplate
from cleanops.models.facility import Floor, Room
from cleanops.services import activity_lifecycle
from cleanops.services.helpers.scoped_queries import get_scoped
from cleanops.services.helpers.store import commit_or_raise
from cleanops.services.permission import Actor, check_permission
from cleanops.utils.helpers import clean_text, parse_time

logger = logging.getLogger(__name__)


def _name_taken(org_id: int, name: str, *, exclude_id: int | None = None) -> bool:
    q = ActivityTemplate.query.filter_by(org_id=org_id, name=name)
    if exclude_id is not None:
        q = q.filter(ActivityTemplate.id != exclude_id)
    return db.session.query(q.exists()).scalar()


def _time_field(data: dict, key: str):
    parsed = parse_time(data.get(key))
    if parsed is None:
        raise ValidationError(f"{key} must be HH:MM", details={key: "invalid"})
    return parsed


def _check_window(start, end) -> None:
    if end <= start:
        raise ValidationError("window_end must be after window_start",
                              details={"window_end": "must be after window_start"})


def _default_assignments(org_id: int, floor_id: int, value) -> list[dict]:
    """Validate a default assignment list against the template's floor.

    Every entry needs a worker; rooms must be on the floor and appear once.
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("default_assignments must be a list",
                              details={"default_assignments": "invalid"})
    seen = set()
    cleaned = []
    for idx, entry in enumerate(value):
        if not isinstance(entry, dict):
            raise ValidationError(f"default_assignments[{idx}] must be an object",
                                  details={"default_assignments": "invalid"})
        room_id = entry.get("room_id")
        if not isinstance(room_id, int) or isinstance(room_id, bool):
            raise ValidationError(f"default_assignments[{idx}].room_id is required",
                                  details={"default_assignments": "room_id required"})
        assigned_to = clean_text(entry.get("assigned_to"), "assigned_to", max_len=64, required=True)
        if room_id in seen:
            raise ValidationError(f"Room {room_id} is assigned more than once",
                                  details={"default_assignments": "duplicate room"})
        seen.add(room_id)
        room = get_scoped(Room, room_id, org_id=org_id)
        if room.floor_id != floor_id:
            raise ValidationError(f"Room {room_id} is not on the template's floor",
                                  details={"default_assignments": "room not on floor"})
        cleaned.append({"room_id": room_id, "assigned_to": assigned_to})
    return cleaned


def _commit_unique(org_id: int, name: str, operation: str) -> None:
    """Commit, turning a name collision that slipped past the pre-check into ConflictError."""
    try:
        commit_or_raise(operation)
    except IntegrityError:
        if _name_taken(org_id, name):
            raise ConflictError("ActivityTemplate", "name", name)
        raise


# ── Queries ──────────────────────────────────────────────────────────────────


def list_templates(actor: Actor, floor_id: int | None = None) -> list[ActivityTemplate]:
    """Templates of the actor's organisation, newest first."""
    check_permission(actor, "activity_template_manage")
    q = ActivityTemplate.query.filter_by(org_id=actor.org_id)
    if floor_id:
        q = q.filter_by(floor_id=floor_id)
    return q.order_by(ActivityTemplate.created_at.desc(), ActivityTemplate.id.desc()).all()


def get_template(template_id: int, actor: Actor) -> ActivityTemplate:
    check_permission(actor, "activity_template_manage")
    return get_scoped(ActivityTemplate, template_id, org_id=actor.org_id)


# ── CRUD ─────────────────────────────────────────────────────────────────────


def create_template(actor: Actor, data: dict) -> ActivityTemplate:
    """Create a template for a floor.

    Args:
        data: ``name``, ``floor_id``, ``window_start``, ``window_end``
            (required), ``notes``, ``default_assignments``.

    Raises:
        PermissionDenied, ValidationError, NotFoundError, ConflictError.
    """
    check_permission(actor, "activity_template_manage")
    name = clean_text(data.get("name"), "name", max_len=100, required=True)
    floor_id = data.get("floor_id")
    if not isinstance(floor_id, int) or isinstance(floor_id, bool):
        raise ValidationError("floor_id is required", details={"floor_id": "required"})
    window_start = _time_field(data, "window_start")
    window_end = _time_field(data, "window_end")
    _check_window(window_start, window_end)
    notes = clean_text(data.get("notes"), "notes", max_len=500)
    get_scoped(Floor, floor_id, org_id=actor.org_id)
    assignments = _default_assignments(actor.org_id, floor_id, data.get("default_assignments"))

    if _name_taken(actor.org_id, name):
        raise ConflictError("ActivityTemplate", "name", name)

    template = ActivityTemplate(
        org_id=actor.org_id,
        floor_id=floor_id,
        created_by=actor.user_id,
        name=name,
        window_start=window_start,
        window_end=window_end,
        notes=notes,
        default_assignments=assignments,
    )
    db.session.add(template)
    _commit_unique(actor.org_id, name, "create activity template")
    logger.info(
        "ActivityTemplate created id=%s floor=%s assignments=%d by=%s",
        template.id, floor_id, len(assignments), actor.user_id,
    )
    return template


def update_template(template_id: int, actor: Actor, data: dict) -> ActivityTemplate:
    """Edit name, window, notes or default assignments. The floor is fixed."""
    template = get_template(template_id, actor)

    values = {}
    if "name" in data:
        values["name"] = clean_text(data["name"], "name", max_len=100, required=True)
    for key in ("window_start", "window_end"):
        if key in data:
            values[key] = _time_field(data, key)
    _check_window(values.get("window_start", template.window_start),
                  values.get("window_end", template.window_end))
    if "notes" in data:
        values["notes"] = clean_text(data["notes"], "notes", max_len=500)
    if "default_assignments" in data:
        values["default_assignments"] = _default_assignments(
            template.org_id, template.floor_id, data["default_assignments"],
        )
    if "name" in values and _name_taken(template.org_id, values["name"], exclude_id=template.id):
        raise ConflictError("ActivityTemplate", "name", values["name"])

    for key, value in values.items():
        setattr(template, key, value)
    _commit_unique(template.org_id, template.name, "update activity template")
    logger.info("ActivityTemplate updated id=%s fields=%s by=%s",
                template.id, sorted(values), actor.user_id)
    return template


def delete_template(template_id: int, actor: Actor) -> None:
    template = get_template(template_id, actor)
    db.session.delete(template)
    commit_or_raise("delete activity template")
    logger.info("ActivityTemplate deleted id=%s by=%s", template_id, actor.user_id)


# ── Save-as / instantiate ────────────────────────────────────────────────────


def save_activity_as_template(activity_id: int, actor: Actor, name) -> ActivityTemplate:
    """
    Capture an activity as a template.

    Floor, window and notes are copied; default_assignments are built from the
    activity's room tasks that currently have a worker.
    """
    check_permission(actor, "activity_template_manage")
    name = clean_text(name, "name", max_len=100, required=True)
    activity = get_scoped(Activity, activity_id, org_id=actor.org_id)
    if _name_taken(actor.org_id, name):
        raise ConflictError("ActivityTemplate", "name", name)

    tasks = (
        RoomTask.query.filter_by(activity_id=activity.id)
        .filter(RoomTask.assigned_to.isnot(None))
        .order_by(RoomTask.id)
        .all()
    )
    template = ActivityTemplate(
        org_id=actor.org_id,
        floor_id=activity.floor_id,
        created_by=actor.user_id,
        name=name,
        window_start=activity.window_start,
        window_end=activity.window_end,
        notes=activity.notes,
        default_assignments=[{"room_id": t.room_id, "assigned_to": t.assigned_to} for t in tasks],
    )
    db.session.add(template)
    _commit_unique(actor.org_id, name, "save activity as template")
    logger.info(
        "Activity %s saved as template id=%s assignments=%d by=%s",
        activity.id, template.id, len(template.default_assignments), actor.user_id,
    )
    return template


def usable_assignments(template: ActivityTemplate) -> list[dict]:
    """Default assignments whose room is still an active room on the template's floor."""
    room_ids = [a["room_id"] for a in template.default_assignments or []]
    if not room_ids:
        return []
    active = {
        r.id for r in Room.query.filter(
            Room.id.in_(room_ids),
            Room.org_id == template.org_id,
            Room.floor_id == template.floor_id,
            Room.is_active.is_(True),
        )
    }
    return [dict(a) for a in template.default_assignments if a["room_id"] in active]


def create_activity_from_template(template_id: int, actor: Actor, data: dict):
    """
    Create a draft activity from a template.

    Args:
        data: ``scheduled_date`` (required); ``name`` and ``notes`` override
            the template's values when given.

    Returns:
        (Activity, assignments): the new draft and the template's default
        assignments still applicable to the floor, ready for publish.
    """
    template = get_template(template_id, actor)
    activity = activity_lifecycle.create_activity(actor, {
        "floor_id": template.floor_id,
        "name": data.get("name") or template.name,
        "scheduled_date": data.get("scheduled_date"),
        "window_start": template.window_start,
        "window_end": template.window_end,
        "notes": data["notes"] if "notes" in data else template.notes,
    })
    logger.info("Activity %s created from template %s", activity.id, template.id)
    return activity, usable_assignments(template)
