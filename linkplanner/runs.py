"""Run orchestration: project registry, background execution and run actions."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from django.conf import settings
from django.db import DatabaseError, connections
from django.db.models import Count

from .content import ModelContentSource
from .engine.ai import AnchorService, OpenAIAnchorService
from .engine.config import EngineConfig, load_config
from .engine.errors import InvalidTransition, NotFound, RunAlreadyActive, RunCanceled
from .engine.graph import ContentSource
from .engine.liveness import LivenessChecker, UrlLivenessChecker
from .engine.pipeline import GenerationPipeline
from .engine.profile import SEOProfile, profile_from_dict
from .engine.progress import RunControl
from .engine.types import ACCEPTED, CANCELED, DRAFT, FAILED, RUNNING
from .models import GenerationRun
from .services import candidate_payload, default_publisher, run_payload
from .store import DjangoRunStore
from .tasks import execute_run

logger = logging.getLogger(__name__)

CONFLICT_MODES = ('reject', 'supersede')
BACKENDS = ('thread', 'celery')

Publisher = Callable[[GenerationRun, List[Any]], List[Dict[str, Any]]]


@dataclass
class RunHandle:
    project_id: str
    control: RunControl
    run_id: str = ''
    thread: Optional[threading.Thread] = None


class RunRegistry:
    """Project id → active run map for runs executing in this process, guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_project: Dict[str, RunHandle] = {}
        self._by_run: Dict[str, RunHandle] = {}

    def claim(self, handle: RunHandle, conflict: str = 'reject') -> Optional[RunHandle]:
        """Register ``handle`` as the project's active run.

        Returns the superseded handle, if any. Raises
        :class:`RunAlreadyActive` when ``conflict`` is ``reject`` and another
        run is active for the project.
        """

        with self._lock:
            previous = self._by_project.get(handle.project_id)
            if previous is not None and conflict != 'supersede':
                raise RunAlreadyActive(
                    f"Run {previous.run_id or '(starting)'} is already active for project {handle.project_id}."
                )
            self._by_project[handle.project_id] = handle
            if previous is not None:
                previous.control.cancel()
            return previous

    def bind(self, handle: RunHandle, run_id: str) -> None:
        with self._lock:
            handle.run_id = run_id
            handle.control.run_id = run_id
            self._by_run[run_id] = handle

    def release(self, handle: RunHandle) -> None:
        with self._lock:
            if self._by_project.get(handle.project_id) is handle:
                del self._by_project[handle.project_id]
            if handle.run_id and self._by_run.get(handle.run_id) is handle:
                del self._by_run[handle.run_id]

    def get(self, run_id: str) -> Optional[RunHandle]:
        with self._lock:
            return self._by_run.get(run_id)

    def active(self, project_id: str) -> Optional[RunHandle]:
        with self._lock:
            return self._by_project.get(project_id)


class RunOrchestrator:
    """Drives generation runs through ``running → draft | failed | canceled → published``.

    The database is the source of truth across worker processes: a partial
    unique constraint allows one ``running`` row per project, cancellation is
    a flag on that row, and the executing worker syncs progress into it at
    checkpoints. The in-process registry only short-circuits the common case
    of a single worker.
    """

    def __init__(
        self,
        source: Optional[ContentSource] = None,
        store: Optional[DjangoRunStore] = None,
        config: Optional[EngineConfig] = None,
        anchor_service: Optional[AnchorService] = None,
        liveness_checker: Optional[LivenessChecker] = None,
        conflict: str = 'reject',
        registry: Optional[RunRegistry] = None,
        backend: str = 'thread',
        progress_interval: float = 2.0,
        stale_after: float = 900.0,
    ) -> None:
        if conflict not in CONFLICT_MODES:
            raise ValueError(f"Unknown run conflict mode: {conflict}")
        if backend not in BACKENDS:
            raise ValueError(f"Unknown run backend: {backend}")
        self.source = source or ModelContentSource()
        self.store = store or DjangoRunStore()
        self.config = config or load_config(None)
        self.conflict = conflict
        self.backend = backend
        self.progress_interval = progress_interval
        self.stale_after = stale_after
        self.registry = registry or RunRegistry()
        self.pipeline = GenerationPipeline(
            self.source,
            self.config,
            anchor_service=anchor_service,
            liveness_checker=liveness_checker,
        )

    def _ensure_ready(self, project_id: str) -> None:
        ensure_ready = getattr(self.source, 'ensure_ready', None)
        if ensure_ready is not None:
            ensure_ready(project_id)
        else:
            self.source.pages(project_id)

    def _watch(self, handle: RunHandle) -> None:
        run_id = handle.run_id

        def poll(snapshot: Dict[str, Any]) -> bool:
            try:
                return self.store.sync_progress(run_id, snapshot)
            except DatabaseError:
                logger.warning('Could not sync progress of run %s', run_id, exc_info=True)
                return False

        handle.control.watch(poll, self.progress_interval)

    def start_run(self, project_id: str, profile: SEOProfile, background: bool = True) -> str:
        """Create a run for ``project_id`` and start generating; return its run id."""

        self._ensure_ready(project_id)

        handle = RunHandle(project_id=project_id, control=RunControl())
        previous = self.registry.claim(handle, self.conflict)
        if previous is not None:
            logger.info('Superseding run %s for project %s', previous.run_id, project_id)
            if previous.thread is not None and previous.thread is not threading.current_thread():
                previous.thread.join(timeout=float(getattr(settings, 'LINKPLANNER_SUPERSEDE_WAIT', 30)))

        try:
            if self.conflict == 'supersede' and self.store.supersede(project_id):
                logger.info('Superseded running runs of project %s in other workers', project_id)
            self.store.reap_stale(project_id, self.stale_after)
            run = self.store.create_run(project_id, profile)
        except Exception:
            self.registry.release(handle)
            raise
        run_id = str(run.run_id)
        logger.info('Run %s started for project %s', run_id, project_id)

        if background and self.backend == 'celery':
            self.registry.release(handle)
            execute_run.delay(run_id)
            return run_id

        self.registry.bind(handle, run_id)
        self._watch(handle)
        if background:
            handle.thread = threading.Thread(
                target=self._execute,
                args=(handle, profile, True),
                name=f'linkplanner-run-{run_id[:8]}',
                daemon=True,
            )
            handle.thread.start()
        else:
            self._execute(handle, profile, False)
        return run_id

    def execute_stored(self, run_id: str) -> None:
        """Execute a run created by another process (the Celery task entry point)."""

        run = self.store.get_run(run_id)
        if run.status != RUNNING:
            logger.info('Run %s is %s; nothing to execute', run_id, run.status)
            return
        handle = RunHandle(project_id=run.project_id, control=RunControl())
        self.registry.bind(handle, str(run.run_id))
        self._watch(handle)
        self._execute(handle, profile_from_dict(run.profile), False)

    def _execute(self, handle: RunHandle, profile: SEOProfile, background: bool) -> None:
        control = handle.control
        run_id = handle.run_id
        try:
            result = self.pipeline.run(handle.project_id, profile, control)
            control.checkpoint('finalizing', 1, 2)
            self.store.finalize(run_id, result, profile, control.snapshot())
            control.complete()
            logger.info('Run %s is a draft: %s', run_id, result.counts)
        except RunCanceled:
            self.store.close(run_id, CANCELED, snapshot=control.snapshot())
            logger.info('Run %s canceled', run_id)
        except NotFound as exc:
            self.store.close(run_id, FAILED, f'Precondition failed: {exc}', control.snapshot())
            logger.warning('Run %s failed a precondition: %s', run_id, exc)
        except Exception as exc:
            logger.exception('Run %s failed', run_id)
            self.store.close(run_id, FAILED, f'Internal error: {exc}', control.snapshot())
        finally:
            self.registry.release(handle)
            if background:
                connections.close_all()

    def get_progress(self, run_id: str) -> Dict[str, Any]:
        handle = self.registry.get(str(run_id))
        if handle is not None:
            snapshot = handle.control.snapshot()
            return progress_payload(
                run_id=str(run_id),
                status=RUNNING,
                phase=snapshot['phase'],
                percent=snapshot['percent'],
                scenarios=snapshot['scenarios'],
                message=snapshot['message'],
                cancel_requested=snapshot['cancel_requested'],
            )

        run = self.store.get_run(run_id)
        return progress_payload(
            run_id=str(run.run_id),
            status=run.status,
            phase=run.phase,
            percent=run.percent,
            scenarios=run.scenario_progress,
            message=run.message,
            cancel_requested=run.cancel_requested,
            error_message=run.error_message,
        )

    def get_draft(
        self,
        run_id: str,
        scenario: Optional[str] = None,
        status: Optional[str] = None,
        source: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        run = self.store.get_run(run_id)
        queryset = self.store.candidates(run, scenario=scenario, status=status, source=source)
        total = queryset.count()
        limit = max(0, int(limit))
        offset = max(0, int(offset))
        page = queryset[offset:offset + limit]
        return {
            'run': run_payload(run),
            'total': total,
            'candidates': [candidate_payload(candidate) for candidate in page],
            'stats': self._stats(run),
        }

    def _stats(self, run: GenerationRun) -> Dict[str, Any]:
        by_status = dict(run.candidates.values_list('status').annotate(total=Count('id')).order_by())
        by_scenario: Dict[str, Dict[str, int]] = {}
        rows = run.candidates.values_list('scenario', 'status').annotate(total=Count('id')).order_by()
        for scenario, status, total in rows:
            by_scenario.setdefault(scenario, {})[status] = total
        reasons = dict(
            run.candidates.exclude(rejection_reason='')
            .values_list('rejection_reason')
            .annotate(total=Count('id'))
            .order_by()
        )
        return {'by_status': by_status, 'by_scenario': by_scenario, 'rejection_reasons': reasons}

    def cancel(self, run_id: str) -> bool:
        """Request cancellation; False when the run is not running anymore.

        The request is stored on the run, so the worker executing it sees it
        at its next checkpoint whichever process received the request.
        """

        handle = self.registry.get(str(run_id))
        if handle is not None:
            handle.control.cancel()
            logger.info('Cancellation requested for run %s', run_id)
            return True
        requested = self.store.request_cancel(run_id)
        if requested:
            logger.info('Cancellation of run %s stored for its worker', run_id)
        return requested

    def publish(self, run_id: str, publisher: Optional[Publisher] = None) -> List[Dict[str, Any]]:
        """Hand the accepted candidates of a draft to ``publisher`` and mark it published."""

        run = self.store.get_run(run_id)
        if run.status != DRAFT:
            raise InvalidTransition(f'Run {run.run_id} is {run.status}; only drafts can be published.')
        accepted = list(self.store.candidates(run, status=ACCEPTED))
        payloads = (publisher or default_publisher)(run, accepted)
        self.store.mark_published(run.run_id)
        logger.info('Run %s published with %s links', run.run_id, len(accepted))
        return payloads


def progress_payload(
    run_id: str,
    status: str,
    phase: str,
    percent: float,
    scenarios: Dict[str, Any],
    message: Optional[str] = None,
    cancel_requested: bool = False,
    error_message: Optional[str] = None,
) -> Dict[str, Any]:
    """One progress shape for live and stored runs."""

    return {
        'run_id': run_id,
        'status': status,
        'phase': phase,
        'percent': percent,
        'scenarios': scenarios or {},
        'message': message or None,
        'cancel_requested': bool(cancel_requested),
        'error_message': error_message or None,
    }


_orchestrator: Optional[RunOrchestrator] = None
_orchestrator_lock = threading.Lock()


def build_orchestrator() -> RunOrchestrator:
    """Create an orchestrator wired from Django settings."""

    config = load_config(getattr(settings, 'LINKPLANNER_ENGINE_CONFIG', None))
    api_key = getattr(settings, 'OPENAI_API_KEY', '')
    anchor_service = None
    if api_key:
        anchor_service = OpenAIAnchorService(
            api_key=api_key,
            model=getattr(settings, 'LINKPLANNER_AI_MODEL', 'gpt-4o-mini'),
            timeout=float(config.param('ai', 'timeout', 20.0)),
        )
    liveness_checker = UrlLivenessChecker(timeout=float(config.param('liveness', 'timeout', 10.0)))
    return RunOrchestrator(
        config=config,
        anchor_service=anchor_service,
        liveness_checker=liveness_checker,
        conflict=getattr(settings, 'LINKPLANNER_RUN_CONFLICT', 'reject'),
        backend=getattr(settings, 'LINKPLANNER_RUN_BACKEND', 'thread'),
        progress_interval=float(getattr(settings, 'LINKPLANNER_PROGRESS_INTERVAL', 2.0)),
        stale_after=float(getattr(settings, 'LINKPLANNER_STALE_RUN_SECONDS', 900)),
    )


def get_orchestrator() -> RunOrchestrator:
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = build_orchestrator()
        return _orchestrator


def reset_orchestrator(orchestrator: Optional[RunOrchestrator] = None) -> None:
    """Replace the process-wide orchestrator (used by tests)."""

    global _orchestrator
    with _orchestrator_lock:
        _orchestrator = orchestrator
