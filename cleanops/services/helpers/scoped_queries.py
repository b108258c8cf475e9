"""
Organisation-scoped query helpers.

Every get-by-id in the lifecycle services goes through these helpers instead
of db.session.get(Model, pk). A direct .get() would let a caller from one
organisation read or mutate another organisation's activities.

Usage:
    activity = get_scoped(Activity, activity_id, org_id=actor.org_id)
    task = get_scoped_or_none(RoomTask, task_id, org_id=actor.org_id)

A cross-organisation hit is indistinguishable from a missing record: both
raise NotFoundError (or return None).
"""

import logging

from sqlalchemy import select

from cleanops.core.exceptions import NotFoundError
from cleanops.models import db

logger = logging.getLogger(__name__)


def get_scoped(model, pk: int, *, org_id: int, for_update: bool = False):
    """Fetch a single entity by PK inside an organisation.

    Args:
        model: SQLAlchemy model class with ``id`` and ``org_id`` columns.
        pk: Primary key value to look up.
        org_id: Organisation scope. Required.
        for_update: Lock the row (SELECT ... FOR UPDATE) where the dialect
            supports it.

    Raises:
        ValueError: If org_id is missing or the model has no org_id column.
        NotFoundError: If the entity does not exist OR belongs to another
            organisation.
    """
    if org_id is None:
        raise ValueError(
            f"{model.__name__} id={pk} requires an org_id scope. "
            "Unscoped lookups are forbidden."
        )
    if not hasattr(model, "org_id"):
        raise ValueError(f"{model.__name__} has no org_id column; refusing unscoped lookup")

    stmt = select(model).where(model.id == pk, model.org_id == org_id)
    if for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug("get_scoped: %s id=%s not found in org %s", model.__name__, pk, org_id)
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return result


def get_scoped_or_none(model, pk: int, *, org_id: int, for_update: bool = False):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, org_id=org_id, for_update=for_update)
    except NotFoundError:
        return None
