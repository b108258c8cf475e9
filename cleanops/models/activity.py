"""
Cleaning Operations Platform
Activity lifecycle domain models.

Models:
    - Activity:      scheduled cleaning round for one floor within a time window
    - RoomTask:      per-room unit of work inside an activity
    - ItemResponse:  worker's answer to one checklist item of a room task

Architecture:
    Floor ──1:N──▶ Activity ──1:N──▶ RoomTask ──1:N──▶ ItemResponse
    RoomTask ──1:N──▶ Deficiency  (models/deficiency.py, referenced not owned)

Lifecycle states:
    Activity:   draft → active → closed  |  draft/active → cancelled
    RoomTask:   not_started → in_progress → done | has_issues
                not_started/in_progress → cancelled  (activity cancellation only)
    Inspection: none → inspected_pass | inspected_fail  (once, after completion)

The transition tables below are the single source of truth for status moves;
services/activity_lifecycle.py and services/room_task_lifecycle.py apply them
as compare-and-swap updates.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import validates

from cleanops.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_STATUSES = {"draft", "active", "closed", "cancelled"}

ROOM_TASK_STATUSES = {"not_started", "in_progress", "done", "has_issues", "cancelled"}

TERMINAL_TASK_STATUSES = ("done", "has_issues", "cancelled")

INSPECTABLE_TASK_STATUSES = ("done", "has_issues")


# ── Lifecycle Transition Tables ──────────────────────────────────────────────

ACTIVITY_TRANSITIONS = {
    "publish": {"from": ["draft"], "to": "active"},
    "cancel":  {"from": ["draft", "active"], "to": "cancelled"},
    "close":   {"from": ["active"], "to": "closed"},
}

TASK_TRANSITIONS = {
    "start":           {"from": ["not_started"], "to": "in_progress"},
    "complete_done":   {"from": ["in_progress"], "to": "done"},
    "complete_issues": {"from": ["in_progress"], "to": "has_issues"},
    "cancel":          {"from": ["not_started", "in_progress"], "to": "cancelled"},
}

INSPECTION_TRANSITIONS = {
    "none":           ["inspected_pass", "inspected_fail"],
    "inspected_pass": [],
    "inspected_fail": [],
}


def _validate(table: dict, status: str, action: str, entity: str) -> dict:
    rule = table.get(action)
    if not rule:
        return {"valid": False, "from": status, "to": None,
                "reason": f"Unknown {entity} action: {action}"}
    if status not in rule["from"]:
        return {"valid": False, "from": status, "to": rule["to"],
                "reason": f"Cannot '{action}' {entity} from status '{status}'"}
    return {"valid": True, "from": status, "to": rule["to"], "reason": None}


def validate_activity_transition(status: str, action: str) -> dict:
    """Validate an Activity action against its current status."""
    return _validate(ACTIVITY_TRANSITIONS, status, action, "activity")


def validate_task_transition(status: str, action: str) -> dict:
    """Validate a RoomTask action against its current status."""
    return _validate(TASK_TRANSITIONS, status, action, "room task")


def validate_inspection_transition(old_result: str, new_result: str) -> bool:
    """Return True if an inspection result may be recorded."""
    return new_result in INSPECTION_TRANSITIONS.get(old_result, [])


def available_activity_actions(status: str) -> list[str]:
    return [a for a, rule in ACTIVITY_TRANSITIONS.items() if status in rule["from"]]


def available_task_actions(status: str) -> list[str]:
    return [a for a, rule in TASK_TRANSITIONS.items() if status in rule["from"]]


# ═════════════════════════════════════════════════════════════════════════════
# 1. Activity
# ═════════════════════════════════════════════════════════════════════════════


class Activity(db.Model):
    """
    Scheduled cleaning round for a floor.

    pass_rate / outcome / pass_threshold are frozen when the activity is
    closed; before that they are NULL and the live figure is derived on read.
    """

    __tablename__ = "activities"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(
        db.Integer, db.ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    floor_id = db.Column(
        db.Integer, db.ForeignKey("floors.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    created_by = db.Column(db.String(64), nullable=False)

    name = db.Column(db.String(100), nullable=False)
    scheduled_date = db.Column(db.Date, nullable=False)
    window_start = db.Column(db.Time, nullable=False)
    window_end = db.Column(db.Time, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | active | closed | cancelled",
    )

    # Frozen on close
    pass_rate = db.Column(db.Float, nullable=True)
    outcome = db.Column(db.String(10), nullable=True, comment="pass | fail | unrated")
    pass_threshold = db.Column(db.Integer, nullable=True)

    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('draft','active','closed','cancelled')",
            name="ck_activity_status",
        ),
        db.CheckConstraint("window_end > window_start", name="ck_activity_window"),
        db.Index("ix_activities_org_status", "org_id", "status"),
    )

    tasks = db.relationship(
        "RoomTask", backref="activity", lazy="select",
        order_by="RoomTask.id",
    )
    floor = db.relationship("Floor")

    def to_dict(self, include_tasks=False):
        result = {
            "id": self.id,
            "org_id": self.org_id,
            "floor_id": self.floor_id,
            "created_by": self.created_by,
            "name": self.name,
            "scheduled_date": self.scheduled_date.isoformat() if self.scheduled_date else None,
            "window_start": self.window_start.strftime("%H:%M") if self.window_start else None,
            "window_end": self.window_end.strftime("%H:%M") if self.window_end else None,
            "notes": self.notes,
            "status": self.status,
            "pass_rate": self.pass_rate,
            "outcome": self.outcome,
            "pass_threshold": self.pass_threshold,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "available_actions": available_activity_actions(self.status),
        }
        if include_tasks:
            result["tasks"] = [t.to_dict() for t in self.tasks]
        return result

    def __repr__(self):
        return f"<Activity {self.id}: {self.name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. RoomTask
# ═════════════════════════════════════════════════════════════════════════════


class RoomTask(db.Model):
    """
    Unit of cleaning work for one room within an activity.

    checklist_snapshot is a list of dicts produced by
    ChecklistItem.to_snapshot(); it is written once at publish and never
    modified afterwards.
    """

    __tablename__ = "room_tasks"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)
    activity_id = db.Column(
        db.Integer, db.ForeignKey("activities.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    room_id = db.Column(
        db.Integer, db.ForeignKey("rooms.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    assigned_to = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(
        db.String(20), nullable=False, default="not_started",
        comment="not_started | in_progress | done | has_issues | cancelled",
    )
    inspection_result = db.Column(
        db.String(20), nullable=False, default="none",
        comment="none | inspected_pass | inspected_fail",
    )

    checklist_template_id = db.Column(db.Integer, nullable=True)
    checklist_snapshot = db.Column(db.JSON, nullable=False)

    issue_note = db.Column(db.Text, nullable=True)
    inspection_note = db.Column(db.Text, nullable=True)
    inspected_by = db.Column(db.String(64), nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    inspected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('not_started','in_progress','done','has_issues','cancelled')",
            name="ck_room_task_status",
        ),
        db.CheckConstraint(
            "inspection_result IN ('none','inspected_pass','inspected_fail')",
            name="ck_room_task_inspection_result",
        ),
        db.UniqueConstraint("activity_id", "room_id", name="uq_room_task_activity_room"),
    )

    room = db.relationship("Room")
    responses = db.relationship(
        "ItemResponse", backref="room_task", lazy="select",
        cascade="all, delete-orphan",
    )

    @validates("checklist_snapshot")
    def _freeze_snapshot(self, key, value):
        if self.checklist_snapshot is not None:
            raise ValueError(f"RoomTask {self.id}: checklist snapshot is immutable")
        return [dict(item) for item in value]

    @property
    def is_terminal(self):
        return self.status in TERMINAL_TASK_STATUSES

    def snapshot_item(self, item_id):
        """Return the snapshot entry for item_id, or None if not in the checklist."""
        for item in self.checklist_snapshot or []:
            if item["item_id"] == item_id:
                return item
        return None

    def to_dict(self):
        return {
            "id": self.id,
            "activity_id": self.activity_id,
            "room_id": self.room_id,
            "assigned_to": self.assigned_to,
            "status": self.status,
            "inspection_result": self.inspection_result,
            "checklist_template_id": self.checklist_template_id,
            "checklist": list(self.checklist_snapshot or []),
            "issue_note": self.issue_note,
            "inspection_note": self.inspection_note,
            "inspected_by": self.inspected_by,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "inspected_at": self.inspected_at.isoformat() if self.inspected_at else None,
            "available_actions": available_task_actions(self.status),
        }

    def __repr__(self):
        return f"<RoomTask {self.id}: room={self.room_id} [{self.status}/{self.inspection_result}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. ItemResponse
# ═════════════════════════════════════════════════════════════════════════════


class ItemResponse(db.Model):
    __tablename__ = "item_responses"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)
    room_task_id = db.Column(
        db.Integer, db.ForeignKey("room_tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    # Snapshot item id; not a FK so template edits never break history
    checklist_item_id = db.Column(db.Integer, nullable=False)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    note = db.Column(db.Text, nullable=True)
    photo_url = db.Column(db.String(500), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("room_task_id", "checklist_item_id", name="uq_item_response_task_item"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "room_task_id": self.room_task_id,
            "checklist_item_id": self.checklist_item_id,
            "is_completed": self.is_completed,
            "note": self.note,
            "photo_url": self.photo_url,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
