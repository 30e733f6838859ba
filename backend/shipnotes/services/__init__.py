"""Business logic services.

Modules are imported directly (``from .services.trigger_service import
TriggerService``); nothing is re-exported here because ``core.context``
imports the client modules of this package.
"""
