"""
Cleaning Operations Platform
Facility reference models.

Models:
    - Organisation: tenant root; carries the inspection pass threshold
    - Floor:        a floor of a building; activities are scheduled per floor
    - RoomType:     classification used to pick a default checklist
    - Room:         a cleanable room on a floor

Building/client/user management lives outside this service; these tables
only hold what the lifecycle engine needs to resolve rooms and thresholds.
"""

from datetime import datetime, timezone

from cleanops.models import db


DEFAULT_PASS_THRESHOLD = 80


class Organisation(db.Model):
    """Tenant root. ``pass_threshold`` is a percentage in [0, 100]."""

    __tablename__ = "organisations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    pass_threshold = db.Column(
        db.Integer, nullable=False, default=DEFAULT_PASS_THRESHOLD,
        comment="Minimum inspection pass rate (percent) for an activity to pass",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint(
            "pass_threshold >= 0 AND pass_threshold <= 100",
            name="ck_organisation_pass_threshold",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "pass_threshold": self.pass_threshold,
        }

    def __repr__(self):
        return f"<Organisation {self.id}: {self.slug}>"


class Floor(db.Model):
    __tablename__ = "floors"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(
        db.Integer, db.ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    building_name = db.Column(db.String(200), nullable=False, default="")
    floor_number = db.Column(db.Integer, nullable=False, default=0)
    floor_name = db.Column(db.String(100), nullable=False, default="")

    rooms = db.relationship("Room", backref="floor", lazy="dynamic", order_by="Room.name")

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "building_name": self.building_name,
            "floor_number": self.floor_number,
            "floor_name": self.floor_name,
        }


class RoomType(db.Model):
    __tablename__ = "room_types"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(
        db.Integer, db.ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)

    def to_dict(self):
        return {"id": self.id, "org_id": self.org_id, "name": self.name}


class Room(db.Model):
    __tablename__ = "rooms"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(
        db.Integer, db.ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    floor_id = db.Column(
        db.Integer, db.ForeignKey("floors.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    room_type_id = db.Column(
        db.Integer, db.ForeignKey("room_types.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    room_type = db.relationship("RoomType")

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "floor_id": self.floor_id,
            "room_type_id": self.room_type_id,
            "name": self.name,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Room {self.id}: {self.name}>"
