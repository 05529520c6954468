"""
Monitor Core Module

Core components for the fire-safety monitor coordinator.
"""

from .connection_manager import ConnectionManager
from .safety_engine import SafetyStateEngine
from .status_monitor import StatusMonitor
from .monitor_coordinator import FireSafetyMonitor

__all__ = ['ConnectionManager', 'SafetyStateEngine', 'StatusMonitor', 'FireSafetyMonitor']
