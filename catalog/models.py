from decimal import Decimal

from django.db import models
from django.core.validators import MinValueValidator, MaxValueValidator


class Category(models.Model):
    """Service categories"""
    name = models.CharField(max_length=100)
    slug = models.SlugField(unique=True, db_index=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'catalog_categories'
        verbose_name_plural = 'Categories'
        ordering = ['name']

    def __str__(self):
        return self.name


class Service(models.Model):
    """A bookable service offered by one vendor"""
    vendor = models.ForeignKey('vendors.Vendor', on_delete=models.PROTECT, related_name='services')
    category = models.ForeignKey(Category, on_delete=models.PROTECT, null=True, blank=True, related_name='services')

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    # Vendor's own percentage markdown, applied before any coupon
    discount = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal('0.00'),
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    duration = models.PositiveIntegerField(default=60, help_text='Minutes')

    is_active = models.BooleanField(default=True)
    is_available = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'catalog_services'
        ordering = ['name']
        indexes = [
            models.Index(fields=['vendor', 'is_active']),
            models.Index(fields=['category', 'is_active']),
        ]

    def __str__(self):
        return self.name

    @property
    def is_bookable(self):
        return self.is_active and self.is_available
