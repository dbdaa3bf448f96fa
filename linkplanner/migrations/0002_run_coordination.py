from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('linkplanner', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='generationrun',
            name='message',
            field=models.CharField(blank=True, max_length=300),
        ),
        migrations.AddField(
            model_name='generationrun',
            name='cancel_requested',
            field=models.BooleanField(default=False),
        ),
        migrations.AddField(
            model_name='generationrun',
            name='heartbeat_at',
            field=models.DateTimeField(blank=True, null=True),
        ),
        migrations.AddConstraint(
            model_name='generationrun',
            constraint=models.UniqueConstraint(
                condition=models.Q(('status', 'running')),
                fields=('project_id',),
                name='linkplanner_one_running_run_per_project',
            ),
        ),
    ]
