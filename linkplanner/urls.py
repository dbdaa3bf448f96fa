"""URL configuration for the linkplanner app.

All routes return JSON. ``app_name`` allows namespacing from the project
URL configuration and is used by the throttle middleware.
"""

from django.urls import path

from . import views

app_name = 'linkplanner'

urlpatterns = [
    path('projects/<str:project_id>/runs/', views.start_run, name='start_run'),
    path('runs/<uuid:run_id>/', views.run_progress, name='run_progress'),
    path('runs/<uuid:run_id>/draft/', views.run_draft, name='run_draft'),
    path('runs/<uuid:run_id>/cancel/', views.cancel_run, name='cancel_run'),
    path('runs/<uuid:run_id>/publish/', views.publish_run, name='publish_run'),
]
