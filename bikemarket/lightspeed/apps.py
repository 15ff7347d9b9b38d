from django.apps import AppConfig


class LightspeedConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'bikemarket.lightspeed'
