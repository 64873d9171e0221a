"""
MadadKaro shared schemas.

Pydantic models used by both the workflow server and the client
synchronization layer.
"""

__version__ = "0.1.0"
