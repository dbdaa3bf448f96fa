"""Database models for the linkplanner app.

Content models (imports, pages, blocks, existing links) are written by the
external import service and only read here. Generation runs, their link
candidates and the dead URLs found while checking targets are owned by the
run orchestrator.
"""

from __future__ import annotations

import uuid

from django.db import models

from .engine import types as engine_types


class ContentImport(models.Model):
    """One import of a project's site content."""

    STATUS_PENDING = 'pending'
    STATUS_PROCESSING = 'processing'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
    ]

    project_id = models.CharField(max_length=64, db_index=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return f"{self.project_id} · {self.status}"


class SitePage(models.Model):
    """A page of an imported site."""

    project_id = models.CharField(max_length=64, db_index=True)
    url = models.URLField(max_length=500)
    title = models.CharField(max_length=300, blank=True)
    keyword = models.CharField(max_length=200, blank=True)
    headings = models.JSONField(default=list, blank=True)
    word_count = models.PositiveIntegerField(default=0)
    is_entry = models.BooleanField(default=False)
    published_at = models.DateTimeField(null=True, blank=True)
    modified_at = models.DateTimeField(null=True, blank=True)
    embedding = models.JSONField(null=True, blank=True)

    class Meta:
        unique_together = ('project_id', 'url')
        ordering = ['id']

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return self.url


class ContentBlock(models.Model):
    """A paragraph-like fragment of a page where links may be inserted."""

    page = models.ForeignKey(SitePage, on_delete=models.CASCADE, related_name='blocks')
    position = models.PositiveIntegerField(default=0)
    text = models.TextField()
    html = models.TextField(blank=True)
    word_offset = models.PositiveIntegerField(null=True, blank=True)
    embedding = models.JSONField(null=True, blank=True)

    class Meta:
        ordering = ['page', 'position', 'id']

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return f"{self.page.url} #{self.position}"


class InternalLink(models.Model):
    """An internal link that already exists on the live site."""

    source = models.ForeignKey(SitePage, on_delete=models.CASCADE, related_name='outgoing_links')
    target = models.ForeignKey(SitePage, on_delete=models.CASCADE, related_name='incoming_links')
    anchor_text = models.CharField(max_length=300, blank=True)
    position = models.PositiveIntegerField(null=True, blank=True)

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return f"{self.source.url} → {self.target.url}"


class GenerationRun(models.Model):
    """One execution of the generation engine for a project."""

    STATUS_CHOICES = [
        (engine_types.RUNNING, 'Running'),
        (engine_types.DRAFT, 'Draft'),
        (engine_types.PUBLISHED, 'Published'),
        (engine_types.FAILED, 'Failed'),
        (engine_types.CANCELED, 'Canceled'),
    ]

    run_id = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    project_id = models.CharField(max_length=64, db_index=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=engine_types.RUNNING)
    phase = models.CharField(max_length=32, default=engine_types.PHASES[0])
    percent = models.FloatField(default=0.0)
    scenario_progress = models.JSONField(default=dict, blank=True)
    generated = models.PositiveIntegerField(default=0)
    accepted = models.PositiveIntegerField(default=0)
    rejected = models.PositiveIntegerField(default=0)
    flagged = models.PositiveIntegerField(default=0)
    profile = models.JSONField(default=dict, blank=True)
    metrics = models.JSONField(default=dict, blank=True)
    error_message = models.TextField(blank=True)
    message = models.CharField(max_length=300, blank=True)
    cancel_requested = models.BooleanField(default=False)
    started_at = models.DateTimeField(auto_now_add=True)
    heartbeat_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)
    published_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-started_at']
        constraints = [
            models.UniqueConstraint(
                fields=['project_id'],
                condition=models.Q(status=engine_types.RUNNING),
                name='linkplanner_one_running_run_per_project',
            ),
        ]

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return f"{self.project_id} · {self.status} · {self.run_id}"


class LinkCandidate(models.Model):
    """A persisted link candidate with its selection outcome."""

    STATUS_CHOICES = [
        (engine_types.ACCEPTED, 'Accepted'),
        (engine_types.REJECTED, 'Rejected'),
        (engine_types.FLAGGED, 'Flagged'),
    ]

    run = models.ForeignKey(GenerationRun, on_delete=models.CASCADE, related_name='candidates')
    order = models.PositiveIntegerField(default=0)
    source_id = models.CharField(max_length=64)
    target_id = models.CharField(max_length=64)
    source_url = models.URLField(max_length=500)
    target_url = models.URLField(max_length=500)
    scenario = models.CharField(max_length=32, db_index=True)
    score = models.FloatField(default=0.0)
    similarity_score = models.FloatField(default=0.0)
    confidence = models.FloatField(default=0.0)
    rationale = models.TextField(blank=True)
    anchor_text = models.CharField(max_length=300, blank=True)
    anchor_source = models.CharField(max_length=16, blank=True)
    source_block_id = models.CharField(max_length=64, blank=True)
    position = models.PositiveIntegerField(null=True, blank=True)
    modified_sentence = models.TextField(blank=True)
    is_exact_anchor = models.BooleanField(default=False)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, db_index=True)
    rejection_reason = models.CharField(max_length=32, blank=True)
    css_class = models.CharField(max_length=200, blank=True)
    rel_attribute = models.CharField(max_length=100, blank=True)
    target_attribute = models.CharField(max_length=20, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ['order']

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return f"{self.source_url} → {self.target_url} ({self.status})"


class BrokenUrl(models.Model):
    """A link target found dead while checking a run's candidates."""

    run = models.ForeignKey(GenerationRun, on_delete=models.CASCADE, related_name='broken_urls')
    project_id = models.CharField(max_length=64, db_index=True)
    url = models.URLField(max_length=500)
    detected_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('run', 'url')

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return self.url
