from django.urls import path
from .views import (
    draft_list_create, draft_detail,
    listing_list_create, listing_detail, listing_sold, listing_edit_history,
    listing_bulk_create, upload_listing_image, browse_listings,
)

urlpatterns = [
    # Draft endpoints
    path('marketplace/drafts/', draft_list_create, name='draft-list-create'),
    path('marketplace/drafts/<int:pk>/', draft_detail, name='draft-detail'),

    # Listing endpoints
    path('marketplace/listings/', listing_list_create, name='listing-list-create'),
    path('marketplace/listings/bulk/', listing_bulk_create, name='listing-bulk-create'),
    path('marketplace/listings/upload-image/', upload_listing_image, name='listing-upload-image'),
    path('marketplace/listings/<int:pk>/', listing_detail, name='listing-detail'),
    path('marketplace/listings/<int:pk>/sold/', listing_sold, name='listing-sold'),
    path('marketplace/listings/<int:pk>/history/', listing_edit_history, name='listing-edit-history'),

    # Public browse
    path('marketplace/browse/', browse_listings, name='browse-listings'),
]
