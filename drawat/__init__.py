"""drawat - record synchronization core for a shared drawing canvas."""

__version__ = "0.1.0"
