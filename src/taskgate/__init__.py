"""Taskgate — token-gated task management across two services.

The identity service registers users and issues signed bearer tokens.
The task service runs task CRUD, verifying every token by calling the
identity service over HTTP before touching any data.
"""

__version__ = "0.1.0"
