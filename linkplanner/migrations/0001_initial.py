import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='ContentImport',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('project_id', models.CharField(db_index=True, max_length=64)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('completed', 'Completed'), ('failed', 'Failed')], default='pending', max_length=16)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='GenerationRun',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('run_id', models.UUIDField(default=uuid.uuid4, editable=False, unique=True)),
                ('project_id', models.CharField(db_index=True, max_length=64)),
                ('status', models.CharField(choices=[('running', 'Running'), ('draft', 'Draft'), ('published', 'Published'), ('failed', 'Failed'), ('canceled', 'Canceled')], default='running', max_length=16)),
                ('phase', models.CharField(default='loading', max_length=32)),
                ('percent', models.FloatField(default=0.0)),
                ('scenario_progress', models.JSONField(blank=True, default=dict)),
                ('generated', models.PositiveIntegerField(default=0)),
                ('accepted', models.PositiveIntegerField(default=0)),
                ('rejected', models.PositiveIntegerField(default=0)),
                ('flagged', models.PositiveIntegerField(default=0)),
                ('profile', models.JSONField(blank=True, default=dict)),
                ('metrics', models.JSONField(blank=True, default=dict)),
                ('error_message', models.TextField(blank=True)),
                ('started_at', models.DateTimeField(auto_now_add=True)),
                ('finished_at', models.DateTimeField(blank=True, null=True)),
                ('published_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'ordering': ['-started_at'],
            },
        ),
        migrations.CreateModel(
            name='SitePage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('project_id', models.CharField(db_index=True, max_length=64)),
                ('url', models.URLField(max_length=500)),
                ('title', models.CharField(blank=True, max_length=300)),
                ('keyword', models.CharField(blank=True, max_length=200)),
                ('headings', models.JSONField(blank=True, default=list)),
                ('word_count', models.PositiveIntegerField(default=0)),
                ('is_entry', models.BooleanField(default=False)),
                ('published_at', models.DateTimeField(blank=True, null=True)),
                ('modified_at', models.DateTimeField(blank=True, null=True)),
                ('embedding', models.JSONField(blank=True, null=True)),
            ],
            options={
                'ordering': ['id'],
                'unique_together': {('project_id', 'url')},
            },
        ),
        migrations.CreateModel(
            name='ContentBlock',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('position', models.PositiveIntegerField(default=0)),
                ('text', models.TextField()),
                ('html', models.TextField(blank=True)),
                ('word_offset', models.PositiveIntegerField(blank=True, null=True)),
                ('embedding', models.JSONField(blank=True, null=True)),
                ('page', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='blocks', to='linkplanner.sitepage')),
            ],
            options={
                'ordering': ['page', 'position', 'id'],
            },
        ),
        migrations.CreateModel(
            name='InternalLink',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('anchor_text', models.CharField(blank=True, max_length=300)),
                ('position', models.PositiveIntegerField(blank=True, null=True)),
                ('source', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='outgoing_links', to='linkplanner.sitepage')),
                ('target', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='incoming_links', to='linkplanner.sitepage')),
            ],
        ),
        migrations.CreateModel(
            name='LinkCandidate',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order', models.PositiveIntegerField(default=0)),
                ('source_id', models.CharField(max_length=64)),
                ('target_id', models.CharField(max_length=64)),
                ('source_url', models.URLField(max_length=500)),
                ('target_url', models.URLField(max_length=500)),
                ('scenario', models.CharField(db_index=True, max_length=32)),
                ('score', models.FloatField(default=0.0)),
                ('similarity_score', models.FloatField(default=0.0)),
                ('confidence', models.FloatField(default=0.0)),
                ('rationale', models.TextField(blank=True)),
                ('anchor_text', models.CharField(blank=True, max_length=300)),
                ('anchor_source', models.CharField(blank=True, max_length=16)),
                ('source_block_id', models.CharField(blank=True, max_length=64)),
                ('position', models.PositiveIntegerField(blank=True, null=True)),
                ('modified_sentence', models.TextField(blank=True)),
                ('is_exact_anchor', models.BooleanField(default=False)),
                ('status', models.CharField(choices=[('accepted', 'Accepted'), ('rejected', 'Rejected'), ('flagged', 'Flagged')], db_index=True, max_length=16)),
                ('rejection_reason', models.CharField(blank=True, max_length=32)),
                ('css_class', models.CharField(blank=True, max_length=200)),
                ('rel_attribute', models.CharField(blank=True, max_length=100)),
                ('target_attribute', models.CharField(blank=True, max_length=20)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('run', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='candidates', to='linkplanner.generationrun')),
            ],
            options={
                'ordering': ['order'],
            },
        ),
        migrations.CreateModel(
            name='BrokenUrl',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('project_id', models.CharField(db_index=True, max_length=64)),
                ('url', models.URLField(max_length=500)),
                ('detected_at', models.DateTimeField(auto_now_add=True)),
                ('run', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='broken_urls', to='linkplanner.generationrun')),
            ],
            options={
                'unique_together': {('run', 'url')},
            },
        ),
    ]
