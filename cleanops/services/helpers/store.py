"""
Entity store primitives shared by the lifecycle services.

compare_and_swap:  conditional UPDATE keyed on the expected pre-state
commit_or_raise:   commit, mapping driver failures to InfrastructureError

Every lifecycle transition is written as

    if not compare_and_swap(Model, pk, expect={"status": "draft"}, values={...}):
        db.session.rollback()
        return TransitionResult.failure(Reason.CONFLICT, ...)
    commit_or_raise("publish activity")

so two actors racing on the same row can never both win.
"""

import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cleanops.core.exceptions import InfrastructureError
from cleanops.models import db

logger = logging.getLogger(__name__)


def compare_and_swap(model, pk, *, expect: dict, values: dict, where=()) -> bool:
    """
    Apply ``values`` to row ``pk`` only if its columns still match ``expect``.

    Args:
        model: SQLAlchemy model class.
        pk: Primary key of the row.
        expect: column → expected value. A list/tuple/set value means
            "column IN (...)".
        values: column → new value.
        where: Extra SQL criteria that must also hold (e.g. parent status).

    Returns:
        True if exactly one row was updated, False if the pre-state no longer
        matched (another writer got there first).

    Raises:
        InfrastructureError: The store rejected or timed out the statement.
    """
    stmt = update(model).where(model.id == pk)
    for column, expected in expect.items():
        col = getattr(model, column)
        if isinstance(expected, (list, tuple, set, frozenset)):
            stmt = stmt.where(col.in_(list(expected)))
        elif expected is None:
            stmt = stmt.where(col.is_(None))
        else:
            stmt = stmt.where(col == expected)
    for criterion in where:
        stmt = stmt.where(criterion)
    stmt = stmt.values(**values).execution_options(synchronize_session=False)

    try:
        result = db.session.execute(stmt)
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("CAS update failed on %s id=%s", model.__name__, pk)
        raise InfrastructureError(f"update {model.__name__}") from exc

    swapped = result.rowcount == 1
    if not swapped:
        logger.warning(
            "CAS miss on %s id=%s expect=%s; state changed concurrently or precondition unmet",
            model.__name__, pk, expect,
        )
    return swapped


def commit_or_raise(operation: str) -> None:
    """Commit the session; on driver failure roll back and raise InfrastructureError.

    IntegrityError is re-raised unchanged so callers can map unique
    violations to domain results.
    """
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Commit failed during %s", operation)
        raise InfrastructureError(operation) from exc
