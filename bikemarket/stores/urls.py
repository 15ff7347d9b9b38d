from django.urls import path
from .views import (
    store_profile, store_category_list_create, store_category_detail,
    store_category_reorder, public_storefront,
)

urlpatterns = [
    # Store settings (verified stores only)
    path('store/profile/', store_profile, name='store-profile'),
    path('store/categories/', store_category_list_create, name='store-category-list-create'),
    path('store/categories/reorder/', store_category_reorder, name='store-category-reorder'),
    path('store/categories/<int:pk>/', store_category_detail, name='store-category-detail'),

    # Public storefront
    path('marketplace/store/<int:user_id>/', public_storefront, name='public-storefront'),
]
