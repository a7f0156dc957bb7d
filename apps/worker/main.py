"""
Celery worker entry point.

Runs the achievement evaluation tasks enqueued by chat turns:

    celery -A main worker --loglevel=info
"""
import os
import sys

# The API package root holds the task modules and their models
API_ROOT = os.environ.get("API_ROOT", os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "api"))
sys.path.insert(0, os.path.abspath(API_ROOT))

from core.logging import setup_logging  # noqa: E402
from tasks import celery_app  # noqa: E402

setup_logging()

celery_app.autodiscover_tasks(["tasks"])

app = celery_app
