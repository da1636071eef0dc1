import atexit
import logging

from django.apps import AppConfig, apps

logger = logging.getLogger(__name__)


class LogisticsConfig(AppConfig):
    """
    Builds the logistics core once per process, around a DjangoStore.
    Views reach it through get_core().
    """
    name = "logistics"
    default_auto_field = "django.db.models.BigAutoField"

    core = None

    def ready(self):
        from core.bootstrap import build_core
        from core.config import CoreSettings

        from .store import DjangoStore

        self.core = build_core(CoreSettings.from_env(), DjangoStore())
        atexit.register(self.core.close)
        logger.info("Logistics core ready")


def get_core():
    return apps.get_app_config("logistics").core
