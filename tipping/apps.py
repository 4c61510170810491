from django.apps import AppConfig


class TippingConfig(AppConfig):
    name = "tipping"
    verbose_name = "Tipping"
    default_auto_field = "django.db.models.BigAutoField"
