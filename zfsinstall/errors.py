"""
Errors Module

Exceptions raised by the installer. External command failures are reported
as `subprocess.CalledProcessError` and are not wrapped.
"""


class InstallerError(Exception):
    """Base class for installer failures."""


class PreconditionError(InstallerError):
    """Raised before any destructive action when the environment is unsuitable."""


class NoSuitableDiskError(InstallerError):
    """Raised when no disk can be offered for the installation."""
