from celery import Celery
from celery.schedules import crontab
from config import ENV


class CeleryManager:
    def __init__(self):
        self.env = ENV()
        self.celery_app = Celery(
            "affiliate",
            broker=self.env.CELERY_BROKER_URL,
            backend=self.env.CELERY_RESULT_BACKEND,
            include=["services.bground.tasks"]
        )

        self.celery_app.conf.update(
            task_serializer="json",
            result_serializer="json",
            accept_content=["json"],
            timezone=self.env.CELERY_TIMEZONE,
            worker_prefetch_multiplier=1,
            task_acks_late=True,
            broker_transport_options={"visibility_timeout": 3600},
            beat_schedule={
                "cleanup-expired-attributions": {
                    "task": "affiliate.cleanup_expired_attributions",
                    "schedule": crontab(hour=3, minute=0),
                },
                # первого числа в 06:00 закрываем прошлый месяц
                "generate-monthly-payouts": {
                    "task": "affiliate.generate_monthly_payouts",
                    "schedule": crontab(day_of_month=1, hour=6, minute=0),
                },
            },
        )
