from django.contrib import admin

from .models import BrokenUrl, ContentImport, GenerationRun, LinkCandidate, SitePage


@admin.register(ContentImport)
class ContentImportAdmin(admin.ModelAdmin):
    list_display = ('project_id', 'status', 'created_at', 'completed_at')
    list_filter = ('status',)
    search_fields = ('project_id',)


@admin.register(SitePage)
class SitePageAdmin(admin.ModelAdmin):
    list_display = ('url', 'project_id', 'title', 'keyword', 'is_entry', 'modified_at')
    list_filter = ('project_id', 'is_entry')
    search_fields = ('url', 'title', 'keyword')
    exclude = ('embedding',)


class LinkCandidateInline(admin.TabularInline):
    model = LinkCandidate
    extra = 0
    can_delete = False
    fields = ('order', 'scenario', 'source_url', 'target_url', 'anchor_text', 'score', 'status', 'rejection_reason')
    readonly_fields = fields
    show_change_link = True


@admin.register(GenerationRun)
class GenerationRunAdmin(admin.ModelAdmin):
    list_display = ('run_id', 'project_id', 'status', 'phase', 'percent', 'accepted', 'rejected', 'flagged', 'cancel_requested', 'started_at')
    list_filter = ('status',)
    search_fields = ('run_id', 'project_id')
    readonly_fields = ('run_id', 'started_at', 'heartbeat_at', 'finished_at', 'published_at')
    inlines = [LinkCandidateInline]


@admin.register(LinkCandidate)
class LinkCandidateAdmin(admin.ModelAdmin):
    list_display = ('source_url', 'target_url', 'anchor_text', 'scenario', 'score', 'status', 'rejection_reason')
    list_filter = ('status', 'scenario', 'rejection_reason', 'anchor_source')
    search_fields = ('source_url', 'target_url', 'anchor_text')


@admin.register(BrokenUrl)
class BrokenUrlAdmin(admin.ModelAdmin):
    list_display = ('url', 'project_id', 'run', 'detected_at')
    search_fields = ('url', 'project_id')
