"""Tenant and user directory tables consumed by metering."""

from auth247.platform.directory.models import DirectoryUser, Tenant

__all__ = ["DirectoryUser", "Tenant"]
