"""
Cleaning Operations Platform
Deficiency domain model.

Models:
    - Deficiency: quality issue linked to a room task, opened on inspection
                  failure or reported manually

Lifecycle states:
    open → in_progress → resolved  |  open → resolved

At most one open/in_progress deficiency may exist per room task. The
service layer checks first; the partial unique index below backs the check
when two inspection failures race each other.
"""

from datetime import datetime, timezone

from cleanops.models import db


# ── Constants ────────────────────────────────────────────────────────────────

DEFICIENCY_SEVERITIES = {"low", "medium", "high"}

DEFICIENCY_STATUSES = {"open", "in_progress", "resolved"}

OPEN_DEFICIENCY_STATUSES = ("open", "in_progress")

DEFICIENCY_TRANSITIONS = {
    "open":        ["in_progress", "resolved"],
    "in_progress": ["resolved"],
    "resolved":    [],
}


def validate_deficiency_transition(old_status, new_status):
    """Return True if Deficiency status transition is valid."""
    return new_status in DEFICIENCY_TRANSITIONS.get(old_status, [])


_OPEN_WHERE = db.text("status IN ('open','in_progress')")


class Deficiency(db.Model):
    __tablename__ = "deficiencies"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)
    room_task_id = db.Column(
        db.Integer, db.ForeignKey("room_tasks.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    reported_by = db.Column(db.String(64), nullable=False)
    assigned_to = db.Column(db.String(64), nullable=True, index=True)

    description = db.Column(db.String(500), nullable=False)
    severity = db.Column(db.String(10), nullable=False, default="medium")
    status = db.Column(
        db.String(20), nullable=False, default="open",
        comment="open | in_progress | resolved",
    )
    from_inspection = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="True when opened automatically by an inspection failure",
    )

    resolution_note = db.Column(db.Text, nullable=True)
    resolved_by = db.Column(db.String(64), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('open','in_progress','resolved')",
            name="ck_deficiency_status",
        ),
        db.CheckConstraint(
            "severity IN ('low','medium','high')",
            name="ck_deficiency_severity",
        ),
        db.Index(
            "uq_deficiency_one_open_per_task", "room_task_id",
            unique=True,
            sqlite_where=_OPEN_WHERE,
            postgresql_where=_OPEN_WHERE,
        ),
    )

    room_task = db.relationship("RoomTask", backref=db.backref("deficiencies", lazy="dynamic"))

    def to_dict(self):
        return {
            "id": self.id,
            "room_task_id": self.room_task_id,
            "reported_by": self.reported_by,
            "assigned_to": self.assigned_to,
            "description": self.description,
            "severity": self.severity,
            "status": self.status,
            "from_inspection": self.from_inspection,
            "resolution_note": self.resolution_note,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Deficiency {self.id}: task={self.room_task_id} [{self.status}]>"
