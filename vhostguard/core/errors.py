"""
Errores de vhostguard.

El core solo define excepciones; la CLI se encarga del formato de salida.
"""

from typing import Optional


class VhostGuardError(Exception):
    """Error base de vhostguard."""
    pass


class ConfigError(VhostGuardError):
    """Error de configuración (valores faltantes, rutas inválidas, YAML mal formado)."""
    pass


class PreconditionError(VhostGuardError):
    """Falla una precondición; se detecta antes de cualquier mutación."""
    pass


class IdentityMissing(PreconditionError):
    """La identidad de runtime no existe en el sistema."""

    def __init__(self, name: str):
        super().__init__(f"La identidad '{name}' no existe")
        self.name = name


class GroupMissing(PreconditionError):
    """El grupo compartido no existe (¿Plesk instalado?)."""

    def __init__(self, name: str):
        super().__init__(f"El grupo '{name}' no existe")
        self.name = name


class ACLUnsupported(PreconditionError):
    """Las ACL POSIX no funcionan sobre el home compartido."""

    def __init__(self, path, reason: str = ""):
        msg = f"No se pudo aplicar ACL en {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.path = path


class PathNotFound(PreconditionError):
    """Una ruta requerida no existe o no es un directorio."""

    def __init__(self, path, what: str = "ruta"):
        super().__init__(f"{what} no encontrado: {path}")
        self.path = path


class ApplyFailed(VhostGuardError):
    """Fallo fatal durante la fase de mutación; aborta la corrida."""

    def __init__(self, path_class: str, action: str, cause: Optional[BaseException] = None):
        msg = f"[{path_class}] {action}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
        self.path_class = path_class
        self.action = action
        self.cause = cause


class ACLApplyTolerated(VhostGuardError):
    """
    Fallo de ACL tolerado en un directorio escribible (p. ej. NFS).

    Nunca se propaga fuera del reconciliador: se registra en el reporte.
    """

    def __init__(self, path, cause: Optional[BaseException] = None):
        msg = f"setfacl falló en {path} (probablemente NFS); se continúa con 2775 + grupo"
        super().__init__(msg)
        self.path = path
        self.cause = cause
