"""Image build and registry publishing."""

from .publisher import ImagePublisher, RegistryCredential, RegistrySession

__all__ = ["ImagePublisher", "RegistryCredential", "RegistrySession"]
