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
            name='StoreCategory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('source', models.CharField(choices=[('lightspeed', 'Lightspeed'), ('custom', 'Custom'), ('display_override', 'Display Override')], default='custom', max_length=20)),
                ('lightspeed_category_id', models.CharField(blank=True, max_length=64, null=True)),
                ('product_ids', models.JSONField(blank=True, default=list)),
                ('display_order', models.IntegerField(default=0)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='store_categories', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'store_categories',
                'ordering': ['display_order', 'id'],
                'indexes': [
                    models.Index(fields=['user', 'is_active'], name='store_cat_user_active_idx'),
                    models.Index(fields=['user', 'display_order'], name='store_cat_user_order_idx'),
                ],
            },
        ),
    ]
