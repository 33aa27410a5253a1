from django.conf import settings
from django.db import models


class ClientProfile(models.Model):
    ROLE_ADMIN = 'admin'
    ROLE_CLIENT = 'client'
    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Admin'),
        (ROLE_CLIENT, 'Client'),
    ]
    STATUS_ACTIVE = 'active'
    STATUS_PENDING = 'pending'
    STATUS_INACTIVE = 'inactive'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_PENDING, 'Pending'),
        (STATUS_INACTIVE, 'Inactive'),
    ]
    PLAN_BASIC = 'basic'

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='client_profile',
    )
    name = models.CharField(max_length=255, default='', db_index=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_CLIENT, db_index=True)
    phone = models.CharField(max_length=50, blank=True, null=True)
    company = models.CharField(max_length=255, blank=True, null=True)
    plan = models.CharField(max_length=50, default=PLAN_BASIC, db_index=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    meta_account_id = models.CharField(max_length=64, blank=True, null=True)
    campaign_id = models.CharField(max_length=64, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f'{self.name} ({self.user.username}, {self.role})'

    @property
    def is_admin(self) -> bool:
        return self.role == self.ROLE_ADMIN


def role_for_user(user) -> str:
    if user is None or not user.is_authenticated:
        return ''
    profile = getattr(user, 'client_profile', None)
    if profile is not None:
        return profile.role
    return ClientProfile.ROLE_ADMIN if user.is_superuser else ClientProfile.ROLE_CLIENT
