"""
Authz models: auth_user, auth_role, auth_user_role, doctor
"""
import uuid
from django.db import models
from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin


# ============================================================================
# Enums
# ============================================================================

class LocaleChoices(models.TextChoices):
    """Languages notifications can be rendered in."""
    DE = 'de', 'Deutsch'
    EN = 'en', 'English'
    BG = 'bg', 'Български'
    PL = 'pl', 'Polski'
    TR = 'tr', 'Türkçe'


class RoleChoices(models.TextChoices):
    """
    Fixed role names.

    - ADMIN: practice staff, may act on behalf of any doctor or patient
    - DOCTOR: publishes availability, confirms and completes own appointments
    - PATIENT: books, pays for, cancels and reschedules own appointments
    """
    ADMIN = 'admin', 'Admin'
    DOCTOR = 'doctor', 'Doctor'
    PATIENT = 'patient', 'Patient'


# ============================================================================
# User Management
# ============================================================================

class UserManager(BaseUserManager):
    """Custom user manager for email-based authentication."""

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email is required')
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)
        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """
    Account for every caller: admins, doctors and patients.

    ``country`` drives consultation pricing and ``locale`` the language of
    notifications sent to the user.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True, max_length=255)
    first_name = models.CharField(max_length=150, blank=True)
    last_name = models.CharField(max_length=150, blank=True)
    phone = models.CharField(max_length=50, blank=True)
    country = models.CharField(
        max_length=50,
        blank=True,
        help_text='Country used for pricing (e.g. Germany, Bulgaria)'
    )
    locale = models.CharField(
        max_length=2,
        choices=LocaleChoices.choices,
        default=LocaleChoices.DE
    )
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)  # Required for admin access
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    class Meta:
        db_table = 'auth_user'
        verbose_name = 'User'
        verbose_name_plural = 'Users'
        indexes = [
            models.Index(fields=['is_active'], name='idx_user_active'),
        ]

    def __str__(self):
        return self.email

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()


class Role(models.Model):
    """System roles (admin|doctor|patient)."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(
        max_length=50,
        unique=True,
        choices=RoleChoices.choices
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'auth_role'
        verbose_name = 'Role'
        verbose_name_plural = 'Roles'

    def __str__(self):
        return self.get_name_display()


class UserRole(models.Model):
    """Many-to-many relationship between users and roles."""
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='user_roles'
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='user_roles'
    )

    class Meta:
        db_table = 'auth_user_role'
        verbose_name = 'User Role'
        verbose_name_plural = 'User Roles'
        unique_together = [('user', 'role')]
        indexes = [
            models.Index(fields=['user'], name='idx_user_role_user'),
            models.Index(fields=['role'], name='idx_user_role_role'),
        ]

    def __str__(self):
        return f"{self.user.email} - {self.role.name}"


class Doctor(models.Model):
    """
    Doctor profile linked to a user account.

    ``display_name`` is what patients see and what the video-consultation
    rule matches against (see ``VIDEO_DOCTOR_NAMES``). Inactive doctors keep
    their history but offer no bookable slots.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name='doctor'
    )
    display_name = models.CharField(max_length=255)
    specialty = models.CharField(max_length=100, default='General Medicine')
    photo_url = models.URLField(max_length=500, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'doctor'
        verbose_name = 'Doctor'
        verbose_name_plural = 'Doctors'
        indexes = [
            models.Index(fields=['is_active'], name='idx_doctor_active'),
            models.Index(fields=['display_name'], name='idx_doctor_name'),
        ]

    def __str__(self):
        return f"Dr. {self.display_name}"
