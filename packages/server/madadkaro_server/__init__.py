"""MadadKaro task/bid workflow server."""

__version__ = "0.1.0"
