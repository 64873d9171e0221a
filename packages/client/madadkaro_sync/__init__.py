"""
MadadKaro sync client

Keeps one user's task and bid views in step with the workflow server by
listening to its event stream and reconciling against the REST API.
"""

__version__ = "0.1.0"
