"""
Checklist Management — Service Layer.

CRUD for checklist templates, their items and per-room overrides:
    - Templates:  create / update / delete, set default for a room type
    - Items:      add (appended), update, delete, reorder
    - Overrides:  set / clear the template a single room uses

Editing a template never affects room tasks that are already published;
those carry their own checklist snapshot (services/checklist_resolver.py).
Permission checks are done by the blueprint (``checklist_manage``).
"""

import logging

from sqlalchemy import func, update

from cleanops.core.exceptions import ValidationError
from cleanops.models import db
from cleanops.models.checklist import ChecklistItem, ChecklistTemplate, RoomChecklistOverride
from cleanops.models.facility import Room, RoomType
from cleanops.services.helpers.scoped_queries import get_scoped
from cleanops.services.helpers.store import commit_or_raise
from cleanops.utils.helpers import clean_text

logger = logging.getLogger(__name__)


def _flag(data: dict, key: str, default=False) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be true or false", details={key: "invalid"})
    return value


def _room_type_id(org_id: int, value):
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError("room_type_id must be an integer", details={"room_type_id": "invalid"})
    return get_scoped(RoomType, value, org_id=org_id).id


def _unset_defaults(org_id: int, room_type_id: int, *, keep_id: int | None = None) -> None:
    stmt = (
        update(ChecklistTemplate)
        .where(
            ChecklistTemplate.org_id == org_id,
            ChecklistTemplate.room_type_id == room_type_id,
            ChecklistTemplate.is_default.is_(True),
        )
        .values(is_default=False)
        .execution_options(synchronize_session=False)
    )
    if keep_id is not None:
        stmt = stmt.where(ChecklistTemplate.id != keep_id)
    db.session.execute(stmt)


# ── ChecklistTemplate CRUD ───────────────────────────────────────────────────


def list_templates(org_id: int, room_type_id: int | None = None) -> list[ChecklistTemplate]:
    """Return an organisation's templates, optionally for one room type."""
    q = ChecklistTemplate.query.filter_by(org_id=org_id)
    if room_type_id:
        q = q.filter_by(room_type_id=room_type_id)
    return q.order_by(ChecklistTemplate.name, ChecklistTemplate.id).all()


def create_template(org_id: int, data: dict) -> ChecklistTemplate:
    """Create a template, optionally with an initial item list.

    Args:
        data: ``name`` (required), ``room_type_id``, ``is_default`` and
            ``items`` (list of item dicts, appended in the given order).

    Raises:
        ValidationError, NotFoundError (room type outside the organisation).
    """
    name = clean_text(data.get("name"), "name", max_len=100, required=True)
    room_type_id = _room_type_id(org_id, data.get("room_type_id"))
    is_default = _flag(data, "is_default")
    if is_default and room_type_id is None:
        raise ValidationError("A default template needs a room_type_id",
                              details={"is_default": "requires room_type_id"})

    items = data.get("items") or []
    if not isinstance(items, list):
        raise ValidationError("items must be a list", details={"items": "invalid"})

    template = ChecklistTemplate(org_id=org_id, name=name, room_type_id=room_type_id,
                                 is_default=is_default)
    for order, raw in enumerate(items, start=1):
        template.items.append(_build_item(org_id, raw, order))

    if is_default:
        _unset_defaults(org_id, room_type_id)
    db.session.add(template)
    commit_or_raise("create checklist template")
    logger.info("ChecklistTemplate created id=%s org=%s items=%d", template.id, org_id, len(items))
    return template


def update_template(template: ChecklistTemplate, data: dict) -> ChecklistTemplate:
    """Rename a template or move it to another room type."""
    if "name" in data:
        template.name = clean_text(data["name"], "name", max_len=100, required=True)
    if "room_type_id" in data:
        new_type = _room_type_id(template.org_id, data["room_type_id"])
        if new_type != template.room_type_id:
            template.room_type_id = new_type
            template.is_default = False
    commit_or_raise("update checklist template")
    logger.info("ChecklistTemplate updated id=%s", template.id)
    return template


def delete_template(template: ChecklistTemplate) -> None:
    """Delete a template, its items and any room overrides pointing at it."""
    template_id = template.id
    RoomChecklistOverride.query.filter_by(template_id=template_id).delete(synchronize_session=False)
    db.session.delete(template)
    commit_or_raise("delete checklist template")
    logger.info("ChecklistTemplate deleted id=%s", template_id)


def set_default_template(template: ChecklistTemplate) -> ChecklistTemplate:
    """Mark a template as the default for its room type, unsetting the previous one."""
    if template.room_type_id is None:
        raise ValidationError("Template has no room type", details={"room_type_id": "required"})
    _unset_defaults(template.org_id, template.room_type_id, keep_id=template.id)
    template.is_default = True
    commit_or_raise("set default checklist template")
    logger.info(
        "ChecklistTemplate %s is now default for room type %s",
        template.id, template.room_type_id,
    )
    return template


# ── ChecklistItem CRUD ───────────────────────────────────────────────────────


def _build_item(org_id: int, data, order: int) -> ChecklistItem:
    if not isinstance(data, dict):
        raise ValidationError("checklist item must be an object", details={"items": "invalid"})
    return ChecklistItem(
        org_id=org_id,
        description=clean_text(data.get("description"), "description", max_len=200, required=True),
        item_order=order,
        requires_photo=_flag(data, "requires_photo"),
        requires_note=_flag(data, "requires_note"),
    )


def add_item(template: ChecklistTemplate, data: dict) -> ChecklistItem:
    """Append an item at the next order index."""
    next_order = (
        db.session.query(func.coalesce(func.max(ChecklistItem.item_order), 0))
        .filter(ChecklistItem.template_id == template.id)
        .scalar()
    ) + 1
    item = _build_item(template.org_id, data, next_order)
    item.template_id = template.id
    db.session.add(item)
    commit_or_raise("add checklist item")
    logger.info("ChecklistItem created id=%s template=%s order=%s", item.id, template.id, next_order)
    return item


def update_item(item: ChecklistItem, data: dict) -> ChecklistItem:
    if "description" in data:
        item.description = clean_text(data["description"], "description", max_len=200, required=True)
    for key in ("requires_photo", "requires_note"):
        if key in data:
            setattr(item, key, _flag(data, key))
    commit_or_raise("update checklist item")
    logger.info("ChecklistItem updated id=%s", item.id)
    return item


def delete_item(item: ChecklistItem) -> None:
    """Delete an item and close the gap in the order sequence."""
    item_id, template_id, order = item.id, item.template_id, item.item_order
    db.session.delete(item)
    db.session.execute(
        update(ChecklistItem)
        .where(ChecklistItem.template_id == template_id, ChecklistItem.item_order > order)
        .values(item_order=ChecklistItem.item_order - 1)
        .execution_options(synchronize_session=False)
    )
    commit_or_raise("delete checklist item")
    logger.info("ChecklistItem deleted id=%s template=%s", item_id, template_id)


def reorder_items(template: ChecklistTemplate, item_ids) -> list[ChecklistItem]:
    """Renumber items 1..n following ``item_ids``.

    Raises:
        ValidationError: ``item_ids`` is not a permutation of the template's items.
    """
    current = {item.id: item for item in template.items}
    if (not isinstance(item_ids, list) or len(item_ids) != len(current)
            or set(item_ids) != set(current)):
        raise ValidationError(
            "item_ids must list every item of the template exactly once",
            details={"item_ids": sorted(current)},
        )
    for order, item_id in enumerate(item_ids, start=1):
        current[item_id].item_order = order
    commit_or_raise("reorder checklist items")
    logger.info("ChecklistTemplate %s items reordered", template.id)
    return [current[i] for i in item_ids]


# ── RoomChecklistOverride ────────────────────────────────────────────────────


def set_room_override(org_id: int, room_id: int, template_id: int) -> RoomChecklistOverride:
    """Point a room at a specific template (replaces any existing override)."""
    room = get_scoped(Room, room_id, org_id=org_id)
    template = get_scoped(ChecklistTemplate, template_id, org_id=org_id)
    override = RoomChecklistOverride.query.filter_by(room_id=room.id).first()
    if override is None:
        override = RoomChecklistOverride(org_id=org_id, room_id=room.id)
        db.session.add(override)
    override.template_id = template.id
    override.is_active = True
    commit_or_raise("set room checklist override")
    logger.info("Room %s checklist override → template %s", room.id, template.id)
    return override


def clear_room_override(org_id: int, room_id: int) -> bool:
    """Remove a room's override. Returns False if there was none."""
    room = get_scoped(Room, room_id, org_id=org_id)
    deleted = (
        RoomChecklistOverride.query
        .filter_by(room_id=room.id, org_id=org_id)
        .delete(synchronize_session=False)
    )
    commit_or_raise("clear room checklist override")
    if deleted:
        logger.info("Room %s checklist override cleared", room.id)
    return bool(deleted)
