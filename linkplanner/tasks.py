"""Celery tasks for generation runs.

Runs are created by the web process and executed here, so any number of
web workers can share one project's run state through the database.
"""

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


def _get_orchestrator():
    """Lazy import to avoid circular imports."""
    from linkplanner.runs import get_orchestrator
    return get_orchestrator()


@shared_task(bind=True, acks_late=False, soft_time_limit=3300, time_limit=3600)
def execute_run(self, run_id: str):
    """
    Execute a generation run that is already stored as ``running``.

    Runs are never retried automatically: a failure marks the run ``failed``
    and the client decides whether to start a new one.
    """
    logger.info("Executing run %s (task %s)", run_id, self.request.id)
    _get_orchestrator().execute_stored(run_id)
    return {"run_id": run_id}
