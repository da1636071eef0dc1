"""
Shared plumbing for the logistics core: configuration, actors, the error
taxonomy and the bootstrap that wires the components together.
"""

from .actors import Actor, ActorRole
from .config import CoreSettings
from .errors import LogisticsError

__all__ = [
    "Actor",
    "ActorRole",
    "CoreSettings",
    "LogisticsError",
]
