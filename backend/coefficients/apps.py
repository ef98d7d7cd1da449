from django.apps import AppConfig
from django.conf import settings


class CoefficientsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'backend.coefficients'

    def ready(self):
        """Load pricing grids once at startup"""
        if getattr(settings, 'COEFFICIENTS_PRELOAD', True):
            from .registry import get_resolver
            get_resolver()
