"""Commerce app configuration."""
from django.apps import AppConfig


class CommerceConfig(AppConfig):
    """Configuration for commerce app (services, orders, invoices)."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.commerce'
    verbose_name = 'Commerce'
