"""WSGI config for the ride engine."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ride_engine.settings.settings")

application = get_wsgi_application()
