"""
Browser: Session Provisioning and the Control Channel
"""

from .channel import BrowserChannel, DevToolsClient, is_dead_channel_error
from .provisioner import BrowserSession, PortAllocator, SessionPaths, SessionProvisioner, allocate_paths

__all__ = [
    "BrowserChannel",
    "DevToolsClient",
    "is_dead_channel_error",
    "BrowserSession",
    "PortAllocator",
    "SessionPaths",
    "SessionProvisioner",
    "allocate_paths",
]
