from django.db import migrations, models
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='DriverPresence',
            fields=[
                ('driver_id', models.BigIntegerField(primary_key=True, serialize=False)),
                ('is_online', models.BooleanField(default=True)),
                ('last_ping_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('went_online_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'driver_presence',
            },
        ),
        migrations.AddIndex(
            model_name='driverpresence',
            index=models.Index(fields=['is_online', 'last_ping_at'], name='presence_online_ping_idx'),
        ),
    ]
