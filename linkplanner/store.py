"""Persistence of generation runs and their candidates."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional

from django.db import DatabaseError, IntegrityError, transaction
from django.core.exceptions import ValidationError
from django.db.models import Q
from django.utils import timezone

from .engine.errors import InvalidTransition, NotFound, PersistenceError, RunAlreadyActive, RunCanceled
from .engine.pipeline import GenerationResult
from .engine.profile import SEOProfile
from .engine.types import CANCELED, DRAFT, FAILED, PUBLISHED, RUNNING, can_transition
from .models import BrokenUrl, GenerationRun, LinkCandidate
from .services import anchor_class

logger = logging.getLogger(__name__)


def _transition(run: GenerationRun, new_status: str) -> None:
    if not can_transition(run.status, new_status):
        raise InvalidTransition(f"Run {run.run_id} cannot move from {run.status} to {new_status}.")
    run.status = new_status


class DjangoRunStore:
    """Reads and writes :class:`GenerationRun` rows.

    ``finalize`` writes every candidate of a run inside one transaction, so
    a run is either a complete draft or has no candidates at all.
    """

    def create_run(self, project_id: str, profile: SEOProfile) -> GenerationRun:
        """Insert the project's ``running`` row; the database allows only one."""

        try:
            with transaction.atomic():
                return GenerationRun.objects.create(
                    project_id=project_id,
                    status=RUNNING,
                    profile=profile.to_dict(),
                    heartbeat_at=timezone.now(),
                )
        except IntegrityError as exc:
            active = self.active_run(project_id)
            label = active.run_id if active is not None else '(unknown)'
            raise RunAlreadyActive(f"Run {label} is already active for project {project_id}.") from exc

    def active_run(self, project_id: str) -> Optional[GenerationRun]:
        return GenerationRun.objects.filter(project_id=project_id, status=RUNNING).first()

    def request_cancel(self, run_id: Any) -> bool:
        """Flag a running run for cancellation; False when it is not running."""

        run = self.get_run(run_id)
        updated = GenerationRun.objects.filter(pk=run.pk, status=RUNNING).update(cancel_requested=True)
        return updated > 0

    def sync_progress(self, run_id: Any, snapshot: Dict[str, Any]) -> bool:
        """Store the progress snapshot and report whether cancellation was requested."""

        GenerationRun.objects.filter(run_id=run_id, status=RUNNING).update(
            phase=snapshot.get('phase', ''),
            percent=snapshot.get('percent', 0.0),
            scenario_progress=snapshot.get('scenarios') or {},
            message=(snapshot.get('message') or '')[:300],
            heartbeat_at=timezone.now(),
        )
        row = GenerationRun.objects.filter(run_id=run_id).values('status', 'cancel_requested').first()
        return row is None or row['cancel_requested'] or row['status'] != RUNNING

    def supersede(self, project_id: str) -> int:
        """Cancel every running run of the project; their workers stop at the next checkpoint."""

        return GenerationRun.objects.filter(project_id=project_id, status=RUNNING).update(
            status=CANCELED,
            cancel_requested=True,
            error_message='Superseded by a newer run.',
            finished_at=timezone.now(),
        )

    def reap_stale(self, project_id: str, stale_after: float) -> int:
        """Fail running runs whose worker stopped reporting progress."""

        cutoff = timezone.now() - timedelta(seconds=stale_after)
        stale = GenerationRun.objects.filter(project_id=project_id, status=RUNNING).filter(
            Q(heartbeat_at__lt=cutoff) | Q(heartbeat_at__isnull=True, started_at__lt=cutoff)
        )
        reaped = stale.update(
            status=FAILED,
            error_message='Internal error: the run stopped reporting progress.',
            finished_at=timezone.now(),
        )
        if reaped:
            logger.warning('Failed %s stale run(s) for project %s', reaped, project_id)
        return reaped

    def get_run(self, run_id: Any) -> GenerationRun:
        try:
            return GenerationRun.objects.get(run_id=run_id)
        except (GenerationRun.DoesNotExist, ValidationError, ValueError) as exc:
            raise NotFound(f"Run {run_id} does not exist.") from exc

    def finalize(
        self,
        run_id: Any,
        result: GenerationResult,
        profile: SEOProfile,
        snapshot: Optional[Dict[str, Any]] = None,
    ) -> GenerationRun:
        """Persist the draft atomically and move the run to ``draft``."""

        html = profile.html
        try:
            with transaction.atomic():
                run = GenerationRun.objects.select_for_update().get(run_id=run_id)
                if run.cancel_requested or run.status != RUNNING:
                    raise RunCanceled(f"Run {run_id} was canceled before it could be finalized.")
                _transition(run, DRAFT)
                LinkCandidate.objects.bulk_create(
                    [
                        LinkCandidate(
                            run=run,
                            order=candidate.order,
                            source_id=candidate.source_id,
                            target_id=candidate.target_id,
                            source_url=candidate.source_url,
                            target_url=candidate.target_url,
                            scenario=candidate.scenario,
                            score=candidate.score,
                            similarity_score=candidate.similarity_score,
                            confidence=candidate.confidence,
                            rationale=candidate.rationale,
                            anchor_text=candidate.anchor_text,
                            anchor_source=candidate.anchor_source or '',
                            source_block_id=candidate.source_block_id or '',
                            position=candidate.position,
                            modified_sentence=candidate.modified_sentence or '',
                            is_exact_anchor=candidate.is_exact_anchor,
                            status=candidate.status,
                            rejection_reason=candidate.rejection_reason or '',
                            css_class=anchor_class(html),
                            rel_attribute=html.rel,
                            target_attribute=html.target,
                            metadata=dict(candidate.metadata),
                        )
                        for candidate in result.candidates
                    ]
                )
                BrokenUrl.objects.bulk_create(
                    [BrokenUrl(run=run, project_id=run.project_id, url=url) for url in result.dead_urls]
                )
                counts = result.counts
                run.generated = counts['generated']
                run.accepted = counts['accepted']
                run.rejected = counts['rejected']
                run.flagged = counts['flagged']
                run.metrics = result.metrics
                run.scenario_progress = result.scenario_progress
                run.phase = (snapshot or {}).get('phase', 'finalizing')
                run.percent = 100.0
                run.finished_at = timezone.now()
                run.save()
        except DatabaseError as exc:
            logger.exception('Persisting run %s failed', run_id)
            raise PersistenceError(f"Could not persist run {run_id}: {exc}") from exc
        return run

    def close(
        self,
        run_id: Any,
        status: str,
        error_message: str = '',
        snapshot: Optional[Dict[str, Any]] = None,
    ) -> GenerationRun:
        """Move a running run to ``failed`` or ``canceled`` without any candidates.

        A run that already left ``running`` (superseded or reaped elsewhere)
        keeps its status.
        """

        with transaction.atomic():
            run = GenerationRun.objects.select_for_update().get(run_id=run_id)
            if run.status != RUNNING:
                logger.info('Run %s is already %s; not moving it to %s', run_id, run.status, status)
                return run
            _transition(run, status)
            run.candidates.all().delete()
            run.error_message = error_message
            run.finished_at = timezone.now()
            if snapshot:
                run.phase = snapshot.get('phase', run.phase)
                run.percent = snapshot.get('percent', run.percent)
                run.scenario_progress = snapshot.get('scenarios', run.scenario_progress)
            run.save()
        return run

    def mark_published(self, run_id: Any) -> GenerationRun:
        with transaction.atomic():
            run = GenerationRun.objects.select_for_update().get(run_id=run_id)
            _transition(run, PUBLISHED)
            run.published_at = timezone.now()
            run.save(update_fields=['status', 'published_at'])
        return run

    def candidates(
        self,
        run: GenerationRun,
        scenario: Optional[str] = None,
        status: Optional[str] = None,
        source: Optional[str] = None,
    ) -> Iterable[LinkCandidate]:
        queryset = run.candidates.all()
        if scenario:
            queryset = queryset.filter(scenario=scenario)
        if status:
            queryset = queryset.filter(status=status)
        if source:
            queryset = queryset.filter(Q(source_url=source) | Q(source_id=source))
        return queryset.order_by('order')
