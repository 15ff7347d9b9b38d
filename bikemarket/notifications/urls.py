from django.urls import path
from .views import notification_preferences

urlpatterns = [
    path('notifications/preferences/', notification_preferences, name='notification-preferences'),
]
