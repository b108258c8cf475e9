"""
Cleaning Operations Platform
Activity template domain model.

Models:
    - ActivityTemplate: reusable floor + time window + default room
                        assignments for recurring cleaning rounds

Architecture:
    Floor ──1:N──▶ ActivityTemplate ··stamps··▶ Activity (draft)

default_assignments is a list of {"room_id": int, "assigned_to": str}; it is
a suggestion handed back when an activity is created from the template and
is re-validated against the floor's rooms at publish time.
"""

from datetime import datetime, timezone

from cleanops.models import db


class ActivityTemplate(db.Model):
    __tablename__ = "activity_templates"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(
        db.Integer, db.ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    floor_id = db.Column(
        db.Integer, db.ForeignKey("floors.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    created_by = db.Column(db.String(64), nullable=False)

    name = db.Column(db.String(100), nullable=False)
    window_start = db.Column(db.Time, nullable=False)
    window_end = db.Column(db.Time, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    default_assignments = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_activity_template_org_name"),
        db.CheckConstraint("window_end > window_start", name="ck_activity_template_window"),
    )

    floor = db.relationship("Floor")

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "floor_id": self.floor_id,
            "created_by": self.created_by,
            "name": self.name,
            "window_start": self.window_start.strftime("%H:%M") if self.window_start else None,
            "window_end": self.window_end.strftime("%H:%M") if self.window_end else None,
            "notes": self.notes,
            "default_assignments": list(self.default_assignments or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ActivityTemplate {self.id}: {self.name}>"
