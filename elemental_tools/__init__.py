"""Disk partitioning, filesystem formatting and installation configuration for OS installers."""

__version__ = "0.1.0"