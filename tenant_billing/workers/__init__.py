from .celery_app import celery_init_app

__all__ = ["celery_init_app"]
