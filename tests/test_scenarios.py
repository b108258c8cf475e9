"""
End-to-end lifecycle scenarios.

A: one task inspected, the other untouched → close fails with incomplete tasks
B: second task completed with issues and failed → deficiency opens, close
   freezes pass rate 50 against threshold 80 → outcome "fail"
C: two inspections of the same task race → first writer wins, the loser gets
   already-inspected, exactly one deficiency exists
"""

from cleanops.core.results import Reason
from cleanops.models import db
from cleanops.models.activity import Activity, RoomTask
from cleanops.models.deficiency import Deficiency
from cleanops.services import activity_lifecycle as activities
from cleanops.services import room_task_lifecycle as tasks
from cleanops.services.permission import Actor


class TestScenarioA:
    def test_close_blocked_by_unfinished_task(self, published, supervisor, worker, finish_task):
        activity_id, (t1, t2) = published
        assert [db.session.get(RoomTask, t).status for t in (t1, t2)] == ["not_started", "not_started"]

        finish_task(t1, worker)
        assert tasks.inspect_task(t1, supervisor, "inspected_pass").ok

        result = activities.close_activity(activity_id, supervisor, 80)
        assert not result.ok
        assert result.reason == Reason.INCOMPLETE_TASKS
        assert result.details["pending_task_ids"] == [t2]
        assert db.session.get(Activity, activity_id).status == "active"


class TestScenarioB:
    def test_failed_inspection_drives_outcome(self, published, supervisor, worker, finish_task):
        activity_id, (t1, t2) = published
        finish_task(t1, worker)
        tasks.inspect_task(t1, supervisor, "inspected_pass")

        assert tasks.start_task(t2, worker).ok
        assert tasks.complete_task(t2, worker, "has_issues", "Sink blocked").ok
        inspection = tasks.inspect_task(t2, supervisor, "inspected_fail", "Sink still blocked")
        assert inspection.ok

        deficiency = db.session.get(Deficiency, inspection.details["deficiency_id"])
        assert deficiency.room_task_id == t2
        assert deficiency.status == "open"

        result = activities.close_activity(activity_id, supervisor, 80)
        assert result.ok
        assert result.details["evaluation"]["pass_rate"] == 50.0
        assert result.details["evaluation"]["outcome"] == "fail"

        activity = db.session.get(Activity, activity_id)
        assert (activity.status, activity.pass_rate, activity.outcome) == ("closed", 50.0, "fail")
        # closing leaves the deficiency to be worked off
        assert db.session.get(Deficiency, deficiency.id).status == "open"


class TestScenarioC:
    def test_concurrent_fail_inspections(self, monkeypatch, org, published, supervisor, worker,
                                         finish_task):
        """The second inspector commits between the first one's checks and its CAS."""
        _, (t1, _) = published
        finish_task(t1, worker)
        rival = Actor(user_id="sup-2", role="supervisor", org_id=org.id)

        real_cas = tasks.compare_and_swap
        outcome = {}

        def racing_cas(model, pk, **kwargs):
            if model is RoomTask and "rival" not in outcome:
                outcome["rival"] = None
                outcome["rival"] = tasks.inspect_task(pk, rival, "inspected_fail", "Rival: bins full")
            return real_cas(model, pk, **kwargs)

        monkeypatch.setattr(tasks, "compare_and_swap", racing_cas)
        loser = tasks.inspect_task(t1, supervisor, "inspected_fail", "Bins full")

        assert outcome["rival"].ok
        assert not loser.ok
        assert loser.reason == Reason.ALREADY_INSPECTED
        assert loser.details["inspection_result"] == "inspected_fail"

        task = db.session.get(RoomTask, t1)
        assert task.inspected_by == rival.user_id
        deficiencies = Deficiency.query.filter_by(room_task_id=t1).all()
        assert len(deficiencies) == 1
        assert deficiencies[0].description == "Rival: bins full"
