"""
Cleaning Operations Platform
Checklist domain models.

Models:
    - ChecklistTemplate:      reusable list of cleaning steps, optionally the
                              default for a room type
    - ChecklistItem:          single ordered step with evidence requirements
    - RoomChecklistOverride:  per-room pointer to a specific template

Architecture:
    Organisation ──1:N──▶ ChecklistTemplate ──1:N──▶ ChecklistItem
    Room ──0:1──▶ RoomChecklistOverride ──N:1──▶ ChecklistTemplate

Resolution order (see services/checklist_resolver.py):
    active override for the room  >  default template for the room type
"""

from datetime import datetime, timezone

from cleanops.models import db


class ChecklistTemplate(db.Model):
    __tablename__ = "checklist_templates"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(
        db.Integer, db.ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    room_type_id = db.Column(
        db.Integer, db.ForeignKey("room_types.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    is_default = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Default template for room_type_id (one per room type)",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    items = db.relationship(
        "ChecklistItem", backref="template", lazy="select",
        cascade="all, delete-orphan", order_by="ChecklistItem.item_order",
    )

    def to_dict(self, include_items=False):
        result = {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "room_type_id": self.room_type_id,
            "is_default": self.is_default,
            "item_count": len(self.items),
        }
        if include_items:
            result["items"] = [i.to_dict() for i in self.items]
        return result

    def __repr__(self):
        return f"<ChecklistTemplate {self.id}: {self.name}>"


class ChecklistItem(db.Model):
    __tablename__ = "checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("checklist_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    org_id = db.Column(db.Integer, nullable=False, index=True)
    description = db.Column(db.String(200), nullable=False)
    item_order = db.Column(db.Integer, nullable=False, default=1)
    requires_photo = db.Column(db.Boolean, nullable=False, default=False)
    requires_note = db.Column(db.Boolean, nullable=False, default=False)

    def to_snapshot(self):
        """Frozen representation copied into a RoomTask at publish time."""
        return {
            "item_id": self.id,
            "description": self.description,
            "order": self.item_order,
            "requires_photo": bool(self.requires_photo),
            "requires_note": bool(self.requires_note),
        }

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "description": self.description,
            "item_order": self.item_order,
            "requires_photo": self.requires_photo,
            "requires_note": self.requires_note,
        }


class RoomChecklistOverride(db.Model):
    __tablename__ = "room_checklist_overrides"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)
    room_id = db.Column(
        db.Integer, db.ForeignKey("rooms.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    template_id = db.Column(
        db.Integer, db.ForeignKey("checklist_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    template = db.relationship("ChecklistTemplate")

    def to_dict(self):
        return {
            "id": self.id,
            "room_id": self.room_id,
            "template_id": self.template_id,
            "is_active": self.is_active,
        }
