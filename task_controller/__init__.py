"""
Task Controller Module

Device-facing side of the MAA remote control bot.

Handles:
- Device and user session registration on poll
- Per-session pending task queues
- Task id -> task kind correlation for asynchronous status reports
- Status report resolution and operator notification
- Single device/session detection used by the operator dialog

The registry is volatile and in-memory: nothing survives a restart.
"""

__version__ = "0.3.0"

SERVICE_NAME = "MAA Remote Control - Task Controller"
