"""
Core: modelo de estado, acciones, reconciliador y generador del script de reparación.

ENFORCEMENT (arquitectura limpia):
- Este paquete NO importa vhostguard.cli ni vhostguard.providers.
- El acceso real al sistema pasa siempre por FilesystemOps (core/infra/contracts.py).
- Los providers y la CLI importan desde core; nunca al revés.
"""

from vhostguard.core.errors import (
    VhostGuardError,
    ConfigError,
    PreconditionError,
    IdentityMissing,
    GroupMissing,
    ACLUnsupported,
    PathNotFound,
    ApplyFailed,
    ACLApplyTolerated,
)

__all__ = [
    "VhostGuardError",
    "ConfigError",
    "PreconditionError",
    "IdentityMissing",
    "GroupMissing",
    "ACLUnsupported",
    "PathNotFound",
    "ApplyFailed",
    "ACLApplyTolerated",
]
