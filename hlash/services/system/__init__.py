"""
System Service - OS service registration and control

Components:
- ServiceController: idempotent control verbs
- ServiceDriver: systemd (or unsupported) backend
- ProgramRunner: run-mode lifecycle with signal handling
- HealthServer: local status endpoint
"""

from .controller import ServiceController
from .driver import ServiceDriver, ServiceStatus, SystemdDriver, UnsupportedDriver, new_driver
from .health_server import HealthServer
from .program import ProgramRunner, ServiceProgram

__all__ = [
    "HealthServer",
    "ProgramRunner",
    "ServiceController",
    "ServiceDriver",
    "ServiceProgram",
    "ServiceStatus",
    "SystemdDriver",
    "UnsupportedDriver",
    "new_driver",
]
