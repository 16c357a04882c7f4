"""
Celery application for background payment work.

Scheduled work (see CELERY_BEAT_SCHEDULE in settings):
    - Reconciliation sweep every few minutes
    - Nightly webhook dedup record retention

On-demand work:
    - Payment notification dispatch after settlement

Tasks are auto-discovered from each installed app's ``tasks`` module;
the reconciliation worker is imported by ``payments.tasks`` so that it is
registered too.
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
