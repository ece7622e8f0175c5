import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Account',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('wallet_address', models.CharField(max_length=50, unique=True)),
                (
                    'role',
                    models.CharField(
                        choices=[('buyer', 'Buyer'), ('artist', 'Artist'), ('admin', 'Admin')],
                        default='buyer',
                        max_length=20,
                    ),
                ),
                ('display_name', models.CharField(blank=True, default='', max_length=100)),
                ('email', models.CharField(blank=True, default='', max_length=255)),
                ('profile_picture_url', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='Asset',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('token_id', models.CharField(max_length=100, unique=True)),
                ('serial_number', models.IntegerField(blank=True, null=True)),
                ('title', models.CharField(max_length=200)),
                ('price_hbar', models.DecimalField(blank=True, decimal_places=8, max_digits=20, null=True)),
                ('is_listed', models.BooleanField(default=True)),
                ('listed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                (
                    'creator',
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name='created_assets',
                        to='artmarket.account',
                    ),
                ),
                (
                    'owner',
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name='owned_assets',
                        to='artmarket.account',
                    ),
                ),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='Sale',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('sale_price_hbar', models.DecimalField(decimal_places=8, max_digits=20)),
                ('platform_fee_hbar', models.DecimalField(decimal_places=8, max_digits=20)),
                ('seller_receives_hbar', models.DecimalField(decimal_places=8, max_digits=20)),
                ('transaction_id', models.CharField(max_length=100, unique=True)),
                (
                    'status',
                    models.CharField(
                        choices=[
                            ('pending', 'Pending'),
                            ('completed', 'Completed'),
                            ('failed', 'Failed'),
                            ('refunded', 'Refunded'),
                        ],
                        default='completed',
                        max_length=20,
                    ),
                ),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                (
                    'asset',
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name='sales',
                        to='artmarket.asset',
                    ),
                ),
                (
                    'buyer',
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name='purchases',
                        to='artmarket.account',
                    ),
                ),
                (
                    'seller',
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name='sales',
                        to='artmarket.account',
                    ),
                ),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='SettlementAttempt',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('gross_price_hbar', models.DecimalField(decimal_places=8, max_digits=20)),
                ('fee_hbar', models.DecimalField(decimal_places=8, max_digits=20)),
                ('seller_amount_hbar', models.DecimalField(decimal_places=8, max_digits=20)),
                ('transaction_id', models.CharField(blank=True, max_length=100, null=True, unique=True)),
                (
                    'status',
                    models.CharField(
                        choices=[
                            ('pending', 'Pending'),
                            ('submitted', 'Submitted'),
                            ('timed_out', 'Timed out'),
                            ('confirmed', 'Confirmed'),
                            ('reconciliation_required', 'Reconciliation required'),
                            ('persisted', 'Persisted'),
                            ('failed', 'Failed'),
                        ],
                        default='pending',
                        max_length=32,
                    ),
                ),
                ('failure_reason', models.CharField(blank=True, default='', max_length=255)),
                ('submitted_at', models.DateTimeField(blank=True, null=True)),
                ('confirmed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                (
                    'asset',
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name='settlement_attempts',
                        to='artmarket.asset',
                    ),
                ),
                (
                    'buyer',
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name='settlement_attempts',
                        to='artmarket.account',
                    ),
                ),
                (
                    'seller',
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name='+',
                        to='artmarket.account',
                    ),
                ),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['asset', 'buyer', 'created_at'], name='artmarket_attempt_asset_buyer'),
                    models.Index(fields=['status'], name='artmarket_attempt_status'),
                ],
            },
        ),
    ]
