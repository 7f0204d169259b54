"""
Relay Module
============

Supervision of the frame pipeline.

Components:
    - RelaySupervisor: Starts, runs, rejuvenates and tears down one pipeline
    - ProcessSupervisor: Restarts the pipeline forever until shutdown
"""

from webcast_relay.relay.process import ProcessSupervisor
from webcast_relay.relay.supervisor import RelaySupervisor

__all__ = [
    "RelaySupervisor",
    "ProcessSupervisor",
]
