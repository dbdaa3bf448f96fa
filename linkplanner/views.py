"""JSON views for the linkplanner app.

Each view is a thin adapter between HTTP and the run orchestrator: it
parses the request, delegates to :mod:`linkplanner.runs` and maps engine
errors to status codes.
"""

from __future__ import annotations

import json

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from .engine.errors import InvalidTransition, NotFound, RunAlreadyActive
from .forms import StartRunForm
from .runs import get_orchestrator


def _error(detail, status: int) -> JsonResponse:
    return JsonResponse({'detail': detail}, status=status)


def _int_param(request: HttpRequest, name: str, default: int) -> int:
    try:
        return max(0, int(request.GET.get(name, default)))
    except (TypeError, ValueError):
        return default


@csrf_exempt
@require_POST
def start_run(request: HttpRequest, project_id: str) -> JsonResponse:
    """Validate the SEO profile and start a generation run for ``project_id``."""

    try:
        body = json.loads(request.body or b'{}')
    except ValueError:
        return _error('Request body must be valid JSON.', 400)
    if not isinstance(body, dict):
        return _error('Request body must be a JSON object.', 400)

    form = StartRunForm(data=body)
    if not form.is_valid():
        return _error(form.errors.get_json_data(), 400)

    orchestrator = get_orchestrator()
    try:
        run_id = orchestrator.start_run(
            project_id,
            form.cleaned_data['profile'],
            background=getattr(settings, 'LINKPLANNER_BACKGROUND_RUNS', True),
        )
    except NotFound as exc:
        return _error(f'Precondition failed: {exc}', 409)
    except RunAlreadyActive as exc:
        return _error(str(exc), 409)

    return JsonResponse({'run_id': run_id, 'progress': orchestrator.get_progress(run_id)}, status=202)


@require_GET
def run_progress(request: HttpRequest, run_id: str) -> JsonResponse:
    try:
        return JsonResponse(get_orchestrator().get_progress(run_id))
    except NotFound as exc:
        return _error(str(exc), 404)


@require_GET
def run_draft(request: HttpRequest, run_id: str) -> JsonResponse:
    """Return a page of the run's candidates, filterable by scenario, status and source."""

    try:
        draft = get_orchestrator().get_draft(
            run_id,
            scenario=request.GET.get('scenario') or None,
            status=request.GET.get('status') or None,
            source=request.GET.get('source') or None,
            limit=_int_param(request, 'limit', 50),
            offset=_int_param(request, 'offset', 0),
        )
    except NotFound as exc:
        return _error(str(exc), 404)
    return JsonResponse(draft)


@csrf_exempt
@require_POST
def cancel_run(request: HttpRequest, run_id: str) -> JsonResponse:
    try:
        canceled = get_orchestrator().cancel(run_id)
    except NotFound as exc:
        return _error(str(exc), 404)
    if not canceled:
        return _error('Run is not running.', 409)
    return JsonResponse({'run_id': run_id, 'cancel_requested': True}, status=202)


@csrf_exempt
@require_POST
def publish_run(request: HttpRequest, run_id: str) -> JsonResponse:
    """Publish a draft: accepted candidates are rendered and handed over."""

    try:
        links = get_orchestrator().publish(run_id)
    except NotFound as exc:
        return _error(str(exc), 404)
    except InvalidTransition as exc:
        return _error(str(exc), 409)
    return JsonResponse({'run_id': run_id, 'status': 'published', 'links': links})
