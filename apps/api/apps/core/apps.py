"""Core app configuration."""
from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Observability and health checks; no models."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'
