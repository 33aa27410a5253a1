from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class Setting(models.Model):
    key = models.CharField(max_length=100, unique=True, db_index=True)
    value = models.TextField(blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return self.key


class TokenLog(models.Model):
    class Status(models.TextChoices):
        SUCCESS = 'success', 'Success'
        FAILED = 'failed', 'Failed'

    action = models.CharField(max_length=50, db_index=True)
    status = models.CharField(max_length=20, choices=Status.choices, db_index=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ['-created_at', '-id']


class MetaConnection(models.Model):
    client = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='meta_connection',
    )
    access_token = models.TextField()
    expires_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f'MetaConnection(client={self.client_id})'


class MetaInsightDaily(models.Model):
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='meta_insights',
    )
    account_id = models.CharField(max_length=64, db_index=True)
    campaign_id = models.CharField(max_length=64, db_index=True)
    campaign_name = models.CharField(max_length=255, blank=True)
    date = models.DateField(db_index=True)
    impressions = models.PositiveBigIntegerField(default=0)
    clicks = models.PositiveBigIntegerField(default=0)
    reach = models.PositiveBigIntegerField(default=0)
    frequency = models.DecimalField(max_digits=12, decimal_places=4, default=0)
    spend = models.DecimalField(max_digits=18, decimal_places=4, default=0)
    ctr = models.DecimalField(max_digits=12, decimal_places=4, default=0)
    cpc = models.DecimalField(max_digits=18, decimal_places=4, default=0)
    cpm = models.DecimalField(max_digits=18, decimal_places=4, default=0)
    conversions = models.PositiveBigIntegerField(default=0)
    cost_per_conversion = models.DecimalField(max_digits=18, decimal_places=4, default=0)
    synced_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['client', 'campaign_id', 'date'],
                name='uniq_meta_insight_client_campaign_date',
            ),
        ]
        indexes = [
            models.Index(fields=['client', 'date'], name='meta_insight_client_date_idx'),
        ]

    def __str__(self):
        return f'{self.campaign_name or self.campaign_id} @ {self.date}'


class AppendOnlyModel(models.Model):
    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if self.pk is not None and type(self).objects.filter(pk=self.pk).exists():
            raise ValidationError(f'{type(self).__name__} rows are immutable once written.')
        super().save(*args, **kwargs)


class ReportHistory(AppendOnlyModel):
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='report_history',
    )
    start_date = models.DateField()
    end_date = models.DateField()
    report_data = models.JSONField()
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ['-created_at', '-id']


class ClientReport(AppendOnlyModel):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='client_reports',
    )
    period = models.CharField(max_length=100)
    payload = models.JSONField(default=dict)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='composed_reports',
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ['-created_at', '-id']


class SyncRun(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        RUNNING = 'running', 'Running'
        SUCCESS = 'success', 'Success'
        FAILED = 'failed', 'Failed'

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='meta_sync_runs',
    )
    account_id = models.CharField(max_length=64)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    synced_count = models.PositiveIntegerField(default=0)
    started_at = models.DateTimeField(auto_now_add=True, db_index=True)
    finished_at = models.DateTimeField(null=True, blank=True, db_index=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'started_at'], name='sync_run_status_started_idx'),
        ]


class SyncLog(models.Model):
    sync_run = models.ForeignKey(
        SyncRun,
        on_delete=models.CASCADE,
        related_name='logs',
    )
    entity = models.CharField(max_length=100, db_index=True)
    message = models.TextField()
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        indexes = [
            models.Index(fields=['sync_run', 'timestamp'], name='sync_log_run_timestamp_idx'),
        ]
