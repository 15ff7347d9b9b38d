from django.urls import path
from .views import (
    category_list_update, item_list, connect, oauth_callback, connection_detail,
    sync_start_status, sync_continue, sync_cancel,
)

urlpatterns = [
    # Catalogue
    path('lightspeed/categories/', category_list_update, name='lightspeed-categories'),
    path('lightspeed/items/', item_list, name='lightspeed-items'),

    # OAuth connection
    path('lightspeed/connect/', connect, name='lightspeed-connect'),
    path('lightspeed/auth/callback/', oauth_callback, name='lightspeed-oauth-callback'),
    path('lightspeed/connection/', connection_detail, name='lightspeed-connection'),

    # Inventory sync
    path('lightspeed/sync/', sync_start_status, name='lightspeed-sync'),
    path('lightspeed/sync/<int:job_id>/continue/', sync_continue, name='lightspeed-sync-continue'),
    path('lightspeed/sync/<int:job_id>/cancel/', sync_cancel, name='lightspeed-sync-cancel'),
]
