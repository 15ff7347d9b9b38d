import django_filters
from django.db.models import Q
from .models import Listing


class ListingFilter(django_filters.FilterSet):
    """Filter for the public marketplace browse using django-filter"""

    # Search across title, brand, model and description
    search = django_filters.CharFilter(method='filter_search', label='Search')

    category = django_filters.CharFilter(field_name='marketplace_category', lookup_expr='iexact')
    subcategory = django_filters.CharFilter(field_name='marketplace_subcategory', lookup_expr='iexact')
    brand = django_filters.CharFilter(field_name='brand', lookup_expr='iexact')
    condition = django_filters.CharFilter(field_name='condition_rating', lookup_expr='iexact')
    bike_type = django_filters.CharFilter(field_name='bike_type', lookup_expr='iexact')
    frame_size = django_filters.CharFilter(field_name='frame_size', lookup_expr='iexact')
    min_price = django_filters.NumberFilter(field_name='price', lookup_expr='gte')
    max_price = django_filters.NumberFilter(field_name='price', lookup_expr='lte')
    listing_type = django_filters.CharFilter(field_name='listing_type')
    seller = django_filters.NumberFilter(field_name='user_id')
    shipping_available = django_filters.BooleanFilter(field_name='shipping_available')

    ordering = django_filters.OrderingFilter(
        fields=(
            ('price', 'price'),
            ('created_at', 'created_at'),
            ('published_at', 'published_at'),
            ('views', 'views'),
        )
    )

    class Meta:
        model = Listing
        fields = ['search', 'category', 'subcategory', 'brand', 'condition', 'bike_type', 'frame_size',
                  'min_price', 'max_price', 'listing_type', 'seller', 'shipping_available']

    def filter_search(self, queryset, name, value):
        """Every word must appear in at least one of the searchable fields"""
        if not value:
            return queryset
        for word in value.split():
            queryset = queryset.filter(
                Q(description__icontains=word) |
                Q(brand__icontains=word) |
                Q(model__icontains=word) |
                Q(product_description__icontains=word)
            )
        return queryset
