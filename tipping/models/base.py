from django.db import models
from django.utils.text import slugify


class TimestampMixin(models.Model):
    """Abstract mixin for created_at/updated_at timestamps"""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class ActiveMixin(models.Model):
    """Abstract mixin for is_active field"""

    is_active = models.BooleanField(default=True)

    class Meta:
        abstract = True


class NamedMixin(models.Model):
    """Abstract mixin for name field"""

    name = models.CharField(max_length=200)

    def __str__(self) -> str:
        return self.name

    class Meta:
        abstract = True


class SlugMixin(models.Model):
    """Abstract mixin generating a unique slug from `slug_source` on first save."""

    slug = models.SlugField(max_length=255, blank=True)

    slug_source = "name"

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self.slug:
            base_slug = slugify(getattr(self, self.slug_source) or "") or "item"
            slug = base_slug
            counter = 1
            while self.__class__.objects.filter(slug=slug).exists():
                slug = f"{base_slug}-{counter}"
                counter += 1
            self.slug = slug
        super().save(*args, **kwargs)
