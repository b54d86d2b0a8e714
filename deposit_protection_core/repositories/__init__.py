"""Data access layer."""

from .registration_repository import RegistrationRepository

__all__ = ["RegistrationRepository"]
