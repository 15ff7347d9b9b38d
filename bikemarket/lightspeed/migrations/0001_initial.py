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
            name='LightspeedConnection',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('connected', 'Connected'), ('disconnected', 'Disconnected'), ('error', 'Error'), ('expired', 'Expired')], default='disconnected', max_length=20)),
                ('account_id', models.CharField(blank=True, max_length=50, null=True)),
                ('account_name', models.CharField(blank=True, max_length=255, null=True)),
                ('access_token_encrypted', models.TextField(blank=True, null=True)),
                ('refresh_token_encrypted', models.TextField(blank=True, null=True)),
                ('token_expires_at', models.DateTimeField(blank=True, null=True)),
                ('oauth_state', models.CharField(blank=True, db_index=True, max_length=64, null=True)),
                ('oauth_state_expires_at', models.DateTimeField(blank=True, null=True)),
                ('connected_at', models.DateTimeField(blank=True, null=True)),
                ('disconnected_at', models.DateTimeField(blank=True, null=True)),
                ('last_sync_at', models.DateTimeField(blank=True, null=True)),
                ('last_token_refresh_at', models.DateTimeField(blank=True, null=True)),
                ('last_error', models.TextField(blank=True, null=True)),
                ('last_error_at', models.DateTimeField(blank=True, null=True)),
                ('error_count', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='lightspeed_connection', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'lightspeed_connections',
            },
        ),
        migrations.CreateModel(
            name='CategorySyncPreference',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('category_id', models.CharField(max_length=50)),
                ('category_name', models.CharField(blank=True, max_length=255)),
                ('category_path', models.CharField(blank=True, max_length=500)),
                ('is_enabled', models.BooleanField(default=False)),
                ('product_count', models.PositiveIntegerField(default=0)),
                ('last_synced_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='lightspeed_category_preferences', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'lightspeed_category_sync_preferences',
                'unique_together': {('user', 'category_id')},
            },
        ),
        migrations.CreateModel(
            name='SyncJob',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('running', 'Running'), ('paused', 'Paused'), ('completed', 'Completed'), ('failed', 'Failed'), ('cancelled', 'Cancelled')], default='running', max_length=20)),
                ('phase', models.CharField(choices=[('init', 'Init'), ('fetch_inventory', 'Fetch Inventory'), ('fetch_items', 'Fetch Items'), ('filter', 'Filter'), ('prepare', 'Prepare'), ('matching', 'Matching'), ('insert', 'Insert'), ('complete', 'Complete'), ('error', 'Error')], default='init', max_length=20)),
                ('message', models.CharField(blank=True, max_length=500)),
                ('progress', models.PositiveSmallIntegerField(default=0)),
                ('category_ids', models.JSONField(blank=True, default=list)),
                ('sync_all', models.BooleanField(default=False)),
                ('next_url', models.TextField(blank=True, null=True)),
                ('category_index', models.PositiveIntegerField(default=0)),
                ('inventory', models.JSONField(blank=True, default=dict, help_text='itemID -> stock levels for items with qoh > 0')),
                ('category_map', models.JSONField(blank=True, default=dict, help_text='categoryID -> {name, fullPath}')),
                ('items_with_stock', models.PositiveIntegerField(default=0)),
                ('items_fetched', models.PositiveIntegerField(default=0)),
                ('items_synced', models.PositiveIntegerField(default=0)),
                ('items_created', models.PositiveIntegerField(default=0)),
                ('items_updated', models.PositiveIntegerField(default=0)),
                ('error', models.TextField(blank=True, null=True)),
                ('started_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='lightspeed_sync_jobs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'lightspeed_sync_jobs',
                'ordering': ['-started_at'],
                'indexes': [models.Index(fields=['user', 'status'], name='ls_sync_jobs_user_status_idx')],
            },
        ),
    ]
