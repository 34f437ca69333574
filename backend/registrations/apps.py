import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class RegistrationsConfig(AppConfig):
    name = 'registrations'
    verbose_name = 'Student Registrations'

    def ready(self):
        """Load the registration store and hook the shutdown flush."""
        from .store import get_store

        get_store().install_shutdown_hooks()

        if settings.ADMIN_PIN == settings.DEFAULT_ADMIN_PIN:
            logger.warning('Default ADMIN_PIN=%s in use. Set a stronger PIN with the ADMIN_PIN environment variable.',
                           settings.DEFAULT_ADMIN_PIN)
