# Generated manually
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('lightspeed', '0001_initial'),
    ]

    operations = [
        # At most one unfinished sync per user
        migrations.AddConstraint(
            model_name='syncjob',
            constraint=models.UniqueConstraint(
                condition=models.Q(status__in=['running', 'paused']),
                fields=('user',),
                name='ls_sync_jobs_one_active_per_user',
            ),
        ),
    ]
