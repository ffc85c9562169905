"""
Gerrit Poller

An incremental change-polling client for many Gerrit instances, with
transparent credential rotation and hot reconfiguration.
"""

__version__ = "0.1.0"
__author__ = "Gerrit Poller"
__email__ = "support@example.com"

from .client import GerritClient
from .config import Settings
from .exceptions import GerritPollerError
from .gateway import GerritRestClient
from .models import ChangeInfo, LastSyncState, ProjectFilter

__all__ = [
    "Settings",
    "GerritClient",
    "GerritRestClient",
    "GerritPollerError",
    "ChangeInfo",
    "LastSyncState",
    "ProjectFilter",
]
