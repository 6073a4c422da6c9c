# users/models.py
from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Marketplace account; the role is supplied by the identity layer."""
    ROLE_CUSTOMER = 'customer'
    ROLE_VENDOR = 'vendor'
    ROLE_ADMIN = 'admin'

    ROLES = [
        (ROLE_CUSTOMER, 'Customer'),
        (ROLE_VENDOR, 'Vendor'),
        (ROLE_ADMIN, 'Admin'),
    ]

    role = models.CharField(max_length=20, choices=ROLES, default=ROLE_CUSTOMER, db_index=True)
    phone = models.CharField(max_length=20, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'
        indexes = [
            models.Index(fields=['email']),
            models.Index(fields=['phone']),
        ]

    @property
    def is_vendor(self):
        return self.role == self.ROLE_VENDOR

    @property
    def is_marketplace_admin(self):
        return self.role == self.ROLE_ADMIN or self.is_superuser
