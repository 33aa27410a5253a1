from django.apps import AppConfig


class MetaReportConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'MetaReport'
