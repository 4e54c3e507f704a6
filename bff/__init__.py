"""Backend-for-frontend layer for tenant onboarding."""

__version__ = "0.1.0"
