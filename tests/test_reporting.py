"""
Tests for quality reports and organisation settings.
"""

from datetime import date

import pytest

from cleanops.core.exceptions import ValidationError
from cleanops.models import db
from cleanops.models.facility import Organisation
from cleanops.services import activity_lifecycle, reporting
from cleanops.services import room_task_lifecycle as tasks
from cleanops.services.permission import PermissionDenied
from cleanops.services.settings_service import get_pass_threshold, get_settings, update_pass_threshold


@pytest.fixture()
def inspected(published, supervisor, worker, other_worker, finish_task):
    """t1 (worker-1) passed, t2 reassigned to worker-2 and failed."""
    activity_id, (t1, t2) = published
    tasks.assign_task(t2, supervisor, other_worker.user_id)
    finish_task(t1, worker)
    finish_task(t2, other_worker)
    tasks.inspect_task(t1, supervisor, "inspected_pass")
    tasks.inspect_task(t2, supervisor, "inspected_fail", "Sticky floor")
    return activity_id, t1, t2


class TestSummary:
    def test_summary(self, inspected, org):
        summary = reporting.organisation_summary(org.id, 80)
        assert summary["total_tasks"] == 2
        assert summary["tasks"]["done"] == 2
        assert summary["evaluation"]["pass_rate"] == 50.0
        assert summary["evaluation"]["outcome"] == "fail"
        assert summary["activities"] == {"active": 1}
        assert summary["open_deficiencies"] == 1

    def test_cancelled_activities_excluded(self, inspected, org, supervisor):
        activity_id, _, _ = inspected
        activity_lifecycle.cancel_activity(activity_id, supervisor)
        summary = reporting.organisation_summary(org.id, 80)
        assert summary["total_tasks"] == 0
        assert summary["evaluation"]["outcome"] == "unrated"

    def test_date_window(self, inspected, org):
        assert reporting.organisation_summary(org.id, 80, date_from=date(2026, 3, 3))["total_tasks"] == 0
        assert reporting.organisation_summary(org.id, 80, date_to=date(2026, 3, 2))["total_tasks"] == 2


class TestBreakdowns:
    def test_by_worker(self, inspected, org):
        rows = reporting.pass_rate_by_worker(org.id, 80)
        assert [(r["worker"], r["pass_rate"], r["outcome"]) for r in rows] == [
            ("worker-1", 100.0, "pass"),
            ("worker-2", 0.0, "fail"),
        ]

    def test_by_floor_and_building(self, inspected, org, floor):
        floors = reporting.pass_rate_by_floor(org.id, 50)
        assert len(floors) == 1
        assert floors[0]["floor_id"] == floor.id
        assert floors[0]["outcome"] == "pass"

        buildings = reporting.pass_rate_by_building(org.id, 80)
        assert buildings == [{
            "building_name": "HQ", "tasks": 2, "pass_rate": 50.0, "outcome": "fail",
            "threshold": 80, "inspected": 2, "passed": 1, "failed": 1,
        }]


class TestSettings:
    def test_threshold_from_org(self, org):
        assert get_pass_threshold(org.id) == 80
        assert get_settings(org.id) == {"org_id": org.id, "pass_threshold": 80}

    def test_admin_updates_threshold(self, org, admin):
        update_pass_threshold(admin, 65)
        assert db.session.get(Organisation, org.id).pass_threshold == 65
        assert get_pass_threshold(org.id) == 65

    def test_supervisor_cannot_update(self, supervisor):
        with pytest.raises(PermissionDenied):
            update_pass_threshold(supervisor, 65)

    @pytest.mark.parametrize("value", [-5, 101, "70", 70.5, None])
    def test_invalid_threshold(self, admin, value):
        with pytest.raises(ValidationError):
            update_pass_threshold(admin, value)

    def test_unknown_org_falls_back_to_config(self, app):
        assert get_pass_threshold(424242) == app.config["DEFAULT_PASS_THRESHOLD"]
