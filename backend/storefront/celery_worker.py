# backend/storefront/celery_worker.py
from celery import Celery, Task
from flask import has_app_context


class FlaskTask(Task):
    """Runs the task body inside the Flask app context the worker was built with."""

    def __call__(self, *args, **kwargs):
        if has_app_context():
            return self.run(*args, **kwargs)
        with self.app.flask_app.app_context():
            return self.run(*args, **kwargs)


celery_app = Celery("storefront", task_cls=FlaskTask)

# Register task modules explicitly so the worker sees them
celery_app.conf.imports = (
    "storefront.services.notification_service",
    "storefront.tasks",
)

celery_app.conf.beat_schedule = {
    "sweep-abandoned-carts-hourly": {
        "task": "storefront.tasks.sweep_abandoned_carts_task",
        "schedule": 3600.0,
    },
    "purge-guest-carts-daily": {
        "task": "storefront.tasks.purge_guest_carts_task",
        "schedule": 86400.0,
    },
}

celery_app.conf.timezone = "UTC"


def init_celery(app) -> Celery:
    """Bind the Celery app to a Flask app and apply its CELERY_* settings."""
    celery_app.conf.update(
        broker_url=app.config["CELERY_BROKER_URL"],
        result_backend=app.config.get("CELERY_RESULT_BACKEND"),
        task_always_eager=app.config.get("CELERY_TASK_ALWAYS_EAGER", False),
        task_ignore_result=True,
    )
    celery_app.flask_app = app
    app.extensions["celery"] = celery_app

    # Task modules register themselves on import
    from . import tasks  # noqa: F401
    from .services import notification_service  # noqa: F401

    return celery_app
