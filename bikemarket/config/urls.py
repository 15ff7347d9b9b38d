"""
URL configuration for the bike marketplace backend.

Every app mounts its routes under ``api/``.
"""
from django.contrib import admin
from django.urls import path, include, re_path
from django.conf import settings
from django.views.static import serve

admin.site.site_header = "Bike Marketplace Admin"
admin.site.site_title = "Bike Marketplace Admin Portal"
admin.site.index_title = "Marketplace administration"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('bikemarket.core.urls')),
    path('api/', include('bikemarket.listings.urls')),
    path('api/', include('bikemarket.orders.urls')),
    path('api/', include('bikemarket.lightspeed.urls')),
    path('api/', include('bikemarket.notifications.urls')),
    path('api/', include('bikemarket.stores.urls')),
    re_path(r'^media/(?P<path>.*)$', serve, {'document_root': settings.MEDIA_ROOT}),
]
