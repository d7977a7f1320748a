"""
Celery application for asynchronous order event fan-out and reports.
"""
import os

from celery import Celery
from celery.schedules import crontab

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('config')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()

app.conf.beat_schedule = {
    'daily-settlement-report': {
        'task': 'payments.tasks.generate_daily_settlement_report',
        'schedule': crontab(hour=0, minute=15),
    },
}
