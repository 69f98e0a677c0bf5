"""Provision a disk and install NixOS from flake templates."""

__version__ = "0.3.0"
