import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='CanonicalProduct',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('normalized_name', models.CharField(db_index=True, max_length=500)),
                ('display_name', models.CharField(max_length=500)),
                ('upc', models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ('brand', models.CharField(blank=True, max_length=200)),
                ('model', models.CharField(blank=True, max_length=200)),
                ('model_year', models.CharField(blank=True, max_length=10)),
                ('category', models.CharField(blank=True, max_length=100)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'canonical_products',
            },
        ),
        migrations.CreateModel(
            name='Listing',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('listing_type', models.CharField(choices=[('private_listing', 'Private Listing'), ('store_inventory', 'Store Inventory')], default='private_listing', max_length=20)),
                ('listing_source', models.CharField(choices=[('manual', 'Manual'), ('facebook_import', 'Facebook Import'), ('lightspeed', 'Lightspeed')], default='manual', max_length=20)),
                ('listing_status', models.CharField(choices=[('draft', 'Draft'), ('active', 'Active'), ('inactive', 'Inactive'), ('sold', 'Sold'), ('expired', 'Expired'), ('archived', 'Archived'), ('removed', 'Removed')], default='draft', max_length=20)),
                ('facebook_source_url', models.URLField(blank=True, max_length=1000, null=True)),
                ('description', models.CharField(max_length=500)),
                ('brand', models.CharField(blank=True, max_length=200, null=True)),
                ('model', models.CharField(blank=True, max_length=200, null=True)),
                ('model_year', models.CharField(blank=True, max_length=10, null=True)),
                ('price', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ('marketplace_category', models.CharField(default='Bicycles', max_length=100)),
                ('marketplace_subcategory', models.CharField(blank=True, max_length=100, null=True)),
                ('product_description', models.TextField(blank=True, null=True)),
                ('primary_image_url', models.URLField(blank=True, max_length=1000, null=True)),
                ('views', models.PositiveIntegerField(default=0)),
                ('frame_size', models.CharField(blank=True, max_length=50, null=True)),
                ('frame_material', models.CharField(blank=True, max_length=100, null=True)),
                ('bike_type', models.CharField(blank=True, max_length=100, null=True)),
                ('groupset', models.CharField(blank=True, max_length=200, null=True)),
                ('wheel_size', models.CharField(blank=True, max_length=50, null=True)),
                ('suspension_type', models.CharField(blank=True, max_length=100, null=True)),
                ('bike_weight', models.CharField(blank=True, max_length=50, null=True)),
                ('color_primary', models.CharField(blank=True, max_length=50, null=True)),
                ('color_secondary', models.CharField(blank=True, max_length=50, null=True)),
                ('part_type_detail', models.CharField(blank=True, max_length=200, null=True)),
                ('compatibility_notes', models.TextField(blank=True, null=True)),
                ('material', models.CharField(blank=True, max_length=100, null=True)),
                ('weight', models.CharField(blank=True, max_length=50, null=True)),
                ('size', models.CharField(blank=True, max_length=50, null=True)),
                ('gender_fit', models.CharField(blank=True, max_length=50, null=True)),
                ('apparel_material', models.CharField(blank=True, max_length=100, null=True)),
                ('condition_rating', models.CharField(blank=True, max_length=50, null=True)),
                ('condition_details', models.TextField(blank=True, null=True)),
                ('seller_notes', models.TextField(blank=True, null=True)),
                ('wear_notes', models.TextField(blank=True, null=True)),
                ('usage_estimate', models.CharField(blank=True, max_length=200, null=True)),
                ('purchase_location', models.CharField(blank=True, max_length=200, null=True)),
                ('purchase_date', models.DateField(blank=True, null=True)),
                ('service_history', models.JSONField(blank=True, default=list)),
                ('upgrades_modifications', models.TextField(blank=True, null=True)),
                ('reason_for_selling', models.TextField(blank=True, null=True)),
                ('is_negotiable', models.BooleanField(default=False)),
                ('shipping_available', models.BooleanField(default=False)),
                ('shipping_cost', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('pickup_location', models.CharField(blank=True, max_length=200, null=True)),
                ('included_accessories', models.TextField(blank=True, null=True)),
                ('seller_contact_preference', models.CharField(choices=[('message', 'Message'), ('phone', 'Phone'), ('email', 'Email')], default='message', max_length=20)),
                ('seller_phone', models.CharField(blank=True, max_length=30, null=True)),
                ('seller_email', models.EmailField(blank=True, max_length=254, null=True)),
                ('is_active', models.BooleanField(default=False)),
                ('published_at', models.DateTimeField(blank=True, null=True)),
                ('expires_at', models.DateTimeField(blank=True, null=True)),
                ('sold_at', models.DateTimeField(blank=True, null=True)),
                ('lightspeed_item_id', models.CharField(blank=True, max_length=64, null=True)),
                ('system_sku', models.CharField(blank=True, max_length=100, null=True)),
                ('custom_sku', models.CharField(blank=True, max_length=100, null=True)),
                ('upc', models.CharField(blank=True, max_length=64, null=True)),
                ('lightspeed_category_id', models.CharField(blank=True, max_length=64, null=True)),
                ('category_name', models.CharField(blank=True, max_length=200, null=True)),
                ('category_path', models.CharField(blank=True, max_length=500, null=True)),
                ('default_cost', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('avg_cost', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('qoh', models.IntegerField(default=1)),
                ('sellable', models.IntegerField(blank=True, null=True)),
                ('reorder_point', models.IntegerField(blank=True, null=True)),
                ('reorder_level', models.IntegerField(blank=True, null=True)),
                ('last_synced_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('canonical_product', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='listings', to='listings.canonicalproduct')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='listings', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'listings',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'listing_status'], name='listings_user_status_idx'),
                    models.Index(fields=['listing_status', 'is_active'], name='listings_status_active_idx'),
                    models.Index(fields=['marketplace_category'], name='listings_category_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('lightspeed_item_id__isnull', False)), fields=('user', 'lightspeed_item_id'), name='unique_user_lightspeed_item'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ListingImage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('url', models.URLField(max_length=1000)),
                ('card_url', models.URLField(blank=True, max_length=1000, null=True)),
                ('thumbnail_url', models.URLField(blank=True, max_length=1000, null=True)),
                ('is_primary', models.BooleanField(default=False)),
                ('sort_order', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('listing', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='images', to='listings.listing')),
            ],
            options={
                'db_table': 'listing_images',
                'ordering': ['sort_order', 'id'],
            },
        ),
        migrations.CreateModel(
            name='ListingEditLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('field_name', models.CharField(max_length=100)),
                ('old_value', models.TextField(blank=True, null=True)),
                ('new_value', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('listing', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='edit_logs', to='listings.listing')),
                ('user', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='listing_edits', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'listing_edit_logs',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='ListingDraft',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('draft_name', models.CharField(max_length=255)),
                ('current_step', models.PositiveIntegerField(default=1)),
                ('form_data', models.JSONField(default=dict)),
                ('completed', models.BooleanField(default=False)),
                ('last_saved_at', models.DateTimeField(auto_now=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='listing_drafts', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'listing_drafts',
                'ordering': ['-last_saved_at'],
            },
        ),
    ]
