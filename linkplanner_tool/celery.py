"""Celery application for linkplanner_tool.

Workers are started with ``celery -A linkplanner_tool worker``.
"""

import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'linkplanner_tool.settings')

app = Celery('linkplanner_tool')

# Load configuration from Django settings with CELERY namespace
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks from all installed apps
app.autodiscover_tasks()

app.conf.task_routes = {
    'linkplanner.tasks.*': {'queue': 'link_generation'},
}
app.conf.task_default_queue = 'default'
