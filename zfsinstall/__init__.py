"""Installer of Ubuntu-family systems on ZFS boot and root pools."""

__version__ = "0.1.0"
