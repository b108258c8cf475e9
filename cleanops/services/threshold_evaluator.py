"""
Threshold Evaluator.

Computes an activity's inspection pass rate and compares it with the
organisation's pass threshold.

    pass_rate = 100 × passed / inspected

where *inspected* counts tasks whose inspection result is not ``none``,
cancelled tasks excluded. With nothing inspected the rate is undefined
(``None``) and the outcome is ``"unrated"``. The threshold is inclusive:
a rate exactly equal to it passes.

The function is pure: it reads only the task attributes passed in, touches
no session and returns the same Evaluation for the same input. It is used on
close (frozen onto the activity) and on demand for reporting.
"""

from dataclasses import dataclass

from cleanops.core.exceptions import ValidationError


@dataclass(frozen=True)
class Evaluation:
    """Pass rate and outcome for a set of room tasks."""
    pass_rate: float | None
    outcome: str
    threshold: int
    inspected: int
    passed: int
    failed: int

    def to_dict(self) -> dict:
        return {
            "pass_rate": self.pass_rate,
            "outcome": self.outcome,
            "threshold": self.threshold,
            "inspected": self.inspected,
            "passed": self.passed,
            "failed": self.failed,
        }


def _field(task, name):
    if isinstance(task, dict):
        return task.get(name)
    return getattr(task, name)


def evaluate(tasks, pass_threshold_percent) -> Evaluation:
    """
    Evaluate a task set against a pass threshold.

    Args:
        tasks: Iterable of RoomTask rows or dicts with ``status`` and
            ``inspection_result``.
        pass_threshold_percent: Integer/float percentage in [0, 100].

    Raises:
        ValidationError: threshold outside [0, 100] or not a number.
    """
    if isinstance(pass_threshold_percent, bool) or not isinstance(pass_threshold_percent, (int, float)):
        raise ValidationError("pass threshold must be a number",
                              details={"pass_threshold": pass_threshold_percent})
    if not 0 <= pass_threshold_percent <= 100:
        raise ValidationError("pass threshold must be between 0 and 100",
                              details={"pass_threshold": pass_threshold_percent})

    passed = failed = 0
    for task in tasks:
        if _field(task, "status") == "cancelled":
            continue
        result = _field(task, "inspection_result")
        if result == "inspected_pass":
            passed += 1
        elif result == "inspected_fail":
            failed += 1

    inspected = passed + failed
    if inspected == 0:
        return Evaluation(None, "unrated", pass_threshold_percent, 0, 0, 0)

    pass_rate = round(100.0 * passed / inspected, 2)
    # Compare on exact integers so rounding never flips the boundary
    outcome = "pass" if passed * 100 >= pass_threshold_percent * inspected else "fail"
    return Evaluation(pass_rate, outcome, pass_threshold_percent, inspected, passed, failed)
