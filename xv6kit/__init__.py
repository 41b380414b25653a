"""Disk images, file system, buffer cache, journal, console and process table of a small teaching kernel."""

__version__ = "0.1.0"