from django.apps import AppConfig


class PkgSyncConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "pkgsync"
    verbose_name = "Package pricing & OTA sync"

    def ready(self) -> None:
        from pkgsync import signals  # noqa: F401
