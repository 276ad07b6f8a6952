"""
Configuración de una invocación.

Se construye una sola vez (defaults < YAML < entorno < CLI) y se pasa a
quien la necesite; no hay estado global.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from vhostguard.core.errors import ConfigError
from vhostguard.core.model import (
    DEFAULT_DOT_DIRS,
    DEFAULT_GROUP,
    DEFAULT_PROFILE,
    DEFAULT_SHELL,
    DEFAULT_WRITABLE,
    SCRIPTS_DIR_NAME,
    StateModel,
    build_model,
    normalize_writable,
)
from vhostguard.core.runtime.resolver import VHOSTS_BASE, artifact_label, document_root


ENV_PREFIX = "VHOSTGUARD_"
ENV_FIELDS = ("group", "shell", "vhosts_base")


class HardenConfig(BaseModel):
    """Parámetros del modelo de dos usuarios para un sitio"""
    runtime_user: str = Field(..., description="Usuario del sistema de la suscripción (ejecuta PHP-FPM)")
    owner_user: str = Field(..., description="Usuario de despliegue, dueño del código")
    domain: Optional[str] = Field(None, description="Dominio (usa <vhosts_base>/<dominio>/httpdocs)")
    vhost_root: Optional[Path] = Field(None, description="Ruta absoluta del docroot")
    vhosts_base: Path = VHOSTS_BASE
    group: str = DEFAULT_GROUP
    shell: str = DEFAULT_SHELL
    writable: List[str] = Field(default_factory=lambda: list(DEFAULT_WRITABLE))
    dot_dirs: List[str] = Field(default_factory=lambda: list(DEFAULT_DOT_DIRS))
    profile_file: str = DEFAULT_PROFILE
    scripts_dir_name: str = SCRIPTS_DIR_NAME
    artifact_prefix: str = "wp_two_user_repair"

    @field_validator("runtime_user", "owner_user", "group")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("no puede estar vacío")
        return v

    @field_validator("writable", mode="before")
    @classmethod
    def _split_writable(cls, v: Any) -> List[str]:
        # compatibilidad: "wp-content/uploads wp-content/cache" en un solo string
        if isinstance(v, str):
            v = [v]
        items: List[str] = []
        for item in v or []:
            items.extend(str(item).split())
        return list(normalize_writable(items))

    @model_validator(mode="after")
    def _check_target(self) -> "HardenConfig":
        if not self.domain and not self.vhost_root:
            raise ValueError("indica domain o vhost_root")
        if self.runtime_user == self.owner_user:
            raise ValueError("runtime_user y owner_user deben ser usuarios distintos")
        return self

    @property
    def document_root(self) -> Path:
        return document_root(self.domain, self.vhost_root, self.vhosts_base)

    @property
    def label(self) -> str:
        return artifact_label(self.domain, self.document_root)

    def build_model(self, shared_home: Path) -> StateModel:
        return build_model(
            document_root=self.document_root,
            shared_home=shared_home,
            owner=self.owner_user,
            runtime=self.runtime_user,
            writable=self.writable,
            group=self.group,
            shell=self.shell,
            dot_dirs=self.dot_dirs,
            profile_file=self.profile_file,
            scripts_dir_name=self.scripts_dir_name,
        )


def _env_values(environ: Dict[str, str]) -> Dict[str, Any]:
    values = {}
    for name in ENV_FIELDS:
        raw = environ.get(ENV_PREFIX + name.upper(), "").strip()
        if raw:
            values[name] = raw
    writable = environ.get(ENV_PREFIX + "WRITABLE", "").strip()
    if writable:
        values["writable"] = writable
    return values


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> HardenConfig:
    """
    Carga la configuración combinando YAML, entorno y overrides de CLI

    Args:
        path: Archivo YAML opcional
        overrides: Valores de CLI (los None se ignoran)
        environ: Entorno (por defecto os.environ)

    Returns:
        HardenConfig validado

    Raises:
        ConfigError si falta algo o el YAML es inválido
    """
    data: Dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise ConfigError(f"Archivo de configuración no encontrado: {path}")
        try:
            with open(path, "r") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"YAML inválido en {path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigError(f"{path} debe contener un mapeo")
        data.update(loaded)

    data.update(_env_values(os.environ if environ is None else environ))
    data.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        return HardenConfig(**data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Configuración inválida: {problems}") from e
