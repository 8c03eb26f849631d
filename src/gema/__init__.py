"""GEMA — learning platform backend.

Notifications, room chat and discussion threads for students and
teachers, with live delivery over server-sent events and websockets.
"""

__version__ = "0.1.0"
