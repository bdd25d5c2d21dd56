"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

# Schedule configuration
beat_schedule = {
    # Expire lapsed memberships and send "expiring soon" notices, daily 02:00 UTC
    'expire-subscriptions': {
        'task': 'tasks.expire_subscriptions',
        'schedule': crontab(hour=2, minute=0),
    },
}
