from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='LTIConsumer',
            fields=[
                ('consumer_key', models.CharField(max_length=255, primary_key=True, serialize=False)),
                ('name', models.CharField(blank=True, max_length=255)),
                ('secret', models.CharField(max_length=255)),
                ('lti_version', models.CharField(blank=True, max_length=12, null=True)),
                ('consumer_name', models.CharField(blank=True, max_length=255, null=True)),
                ('consumer_version', models.CharField(blank=True, max_length=255, null=True)),
                ('consumer_guid', models.CharField(blank=True, help_text='tool_consumer_instance_guid this key is bound to', max_length=255, null=True)),
                ('css_path', models.CharField(blank=True, max_length=255, null=True)),
                ('protected', models.BooleanField(default=False, help_text='Only accept launches from the bound instance GUID')),
                ('enabled', models.BooleanField(default=False)),
                ('enable_from', models.DateTimeField(blank=True, null=True)),
                ('enable_until', models.DateTimeField(blank=True, null=True)),
                ('last_access', models.DateField(blank=True, null=True)),
                ('created', models.DateTimeField(auto_now_add=True)),
                ('updated', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'LTI consumer',
            },
        ),
        migrations.CreateModel(
            name='LTIUser',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('consumer_key', models.CharField(max_length=255)),
                ('resource_link_id', models.CharField(max_length=255)),
                ('user_id', models.CharField(max_length=255)),
                ('lti_result_sourcedid', models.CharField(max_length=1024)),
                ('created', models.DateTimeField(auto_now_add=True)),
                ('updated', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'LTI user',
                'unique_together': {('consumer_key', 'resource_link_id', 'user_id')},
            },
        ),
        migrations.CreateModel(
            name='LTIResourceLink',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('resource_link_id', models.CharField(max_length=255)),
                ('context_id', models.CharField(blank=True, max_length=255, null=True)),
                ('title', models.CharField(blank=True, max_length=255)),
                ('settings', models.JSONField(blank=True, default=dict)),
                ('primary_consumer_key', models.CharField(blank=True, max_length=255, null=True)),
                ('primary_resource_link_id', models.CharField(blank=True, max_length=255, null=True)),
                ('share_approved', models.BooleanField(blank=True, null=True)),
                ('created', models.DateTimeField(auto_now_add=True)),
                ('updated', models.DateTimeField(auto_now=True)),
                ('consumer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='resource_links', to='lti.lticonsumer')),
            ],
            options={
                'verbose_name': 'LTI resource link',
                'indexes': [models.Index(fields=['primary_consumer_key', 'primary_resource_link_id'], name='lti_primary_link_idx')],
                'unique_together': {('consumer', 'resource_link_id')},
            },
        ),
        migrations.CreateModel(
            name='LTIShareKey',
            fields=[
                ('share_key_id', models.CharField(max_length=32, primary_key=True, serialize=False)),
                ('auto_approve', models.BooleanField(default=False)),
                ('expires', models.DateTimeField(db_index=True)),
                ('resource_link', models.ForeignKey(help_text='Primary resource link being shared', on_delete=django.db.models.deletion.CASCADE, related_name='share_keys', to='lti.ltiresourcelink')),
            ],
            options={
                'verbose_name': 'LTI share key',
            },
        ),
        migrations.CreateModel(
            name='LTIConsumerNonce',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('value', models.CharField(max_length=32)),
                ('expires', models.DateTimeField(db_index=True)),
                ('consumer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='nonces', to='lti.lticonsumer')),
            ],
            options={
                'verbose_name': 'LTI consumer nonce',
                'unique_together': {('consumer', 'value')},
            },
        ),
    ]
