"""
Celery configuration for the order lifecycle service.

DJANGO_SETTINGS_MODULE is set before the app is created so Celery reads the
Django settings (CELERY_ prefix).  The ``orders.cancel_unpaid_orders`` task
reschedules itself; the first run is queued by
``manage.py cancel_unpaid_orders --queue``.
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("orders")

# Read Django settings with the CELERY_ prefix
app.config_from_object("django.conf:settings", namespace="CELERY")

# Discover tasks.py in every installed app
app.autodiscover_tasks()
