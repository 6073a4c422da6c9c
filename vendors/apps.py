# vendors/apps.py
from django.apps import AppConfig


class VendorsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'vendors'

    def ready(self):
        """Import signals when app is ready"""
        import vendors.signals  # noqa
