import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ride_engine.settings.settings")

app = Celery("ride_engine")

# CELERY_* keys in Django settings configure the worker and beat
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
