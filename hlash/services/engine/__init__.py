"""
Engine Service - the clash process and its reload channel
"""

from .engine import ClashEngine, Engine
from .reload import ReloadChannel, ReloadSignaler
from .service import EngineService

__all__ = ["ClashEngine", "Engine", "EngineService", "ReloadChannel", "ReloadSignaler"]
