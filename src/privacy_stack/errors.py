# src/privacy_stack/errors.py
from __future__ import annotations


class ProvisioningError(RuntimeError):
    """Fatal provisioning failure. The run stops and exits with ``exit_code``."""

    exit_code = 1


class PrivilegeError(ProvisioningError):
    pass


class PlatformError(ProvisioningError):
    pass


class InvalidNetworkSpec(ProvisioningError, ValueError):
    pass


class InsufficientAddressSpace(ProvisioningError, ValueError):
    pass


class MissingEndpoint(ProvisioningError):
    pass


class DependencyInstallError(ProvisioningError):
    pass


class ServiceControlError(ProvisioningError):
    pass


class KeyMaterialError(ProvisioningError):
    pass


class ConcurrentRunError(ProvisioningError):
    pass
