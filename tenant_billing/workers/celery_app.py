# tenant_billing/workers/celery_app.py
from celery import Celery, Task
from celery.schedules import crontab
from kombu import Queue

BEAT_SCHEDULE = {
    "purge-expired-checkouts": {
        "task": "tenant_billing.workers.checkout_tasks.purge_expired_checkouts",
        "schedule": crontab(minute=0),
    },
}


def celery_init_app(app) -> Celery:
    """Bind a Celery instance to the Flask app; every task runs inside an app context."""

    class FlaskTask(Task):
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return self.run(*args, **kwargs)

    celery_app = Celery(app.name, task_cls=FlaskTask)
    celery_app.config_from_object(app.config["CELERY"])
    celery_app.conf.update(
        task_default_queue="default",
        task_queues=(
            Queue("default"),
            Queue("maintenance"),
        ),
        task_routes={
            "tenant_billing.workers.checkout_tasks.*": {"queue": "maintenance"},
        },
        beat_schedule=BEAT_SCHEDULE,
    )
    celery_app.set_default()
    app.extensions["celery"] = celery_app

    # Register tasks with this instance
    from tenant_billing.workers import checkout_tasks  # noqa: F401

    return celery_app
