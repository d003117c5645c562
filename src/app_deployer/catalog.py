"""Declarative package catalog.

A catalog is a JSON document describing what a deployment can install,
patch or remove::

    {
      "app_vendor": "Contoso",
      "app_name": "Widget",
      "app_version": "5.2",
      "required_disk_mb": 500,
      "packages": [
        {"product_key": "{OLD-GUID}", "action": "Uninstall", "display_name": "Widget 4"},
        {"product_key": "{NEW-GUID}", "action": "Install", "installer": "Files/widget.msi"}
      ],
      "executables": [
        {"path": "Files/configure.exe", "arguments": ["/silent"], "phase": "Post"}
      ]
    }

Rows with ``"enabled": false`` are kept in the catalog (and in logs) but never
planned. Keys starting with ``_`` are treated as comments.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import ConfigurationError
from .orchestrator.models import DeploymentType, PackageAction, Phase


def _strip_comments(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if not k.startswith("_")}


def _as_tuple(value: Any, what: str) -> Tuple[Any, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)):
        return tuple(value)
    raise ConfigurationError(f"'{what}' must be a list, got {type(value).__name__}")


@dataclass(frozen=True)
class PackageEntry:
    """One catalog row."""

    product_key: str
    action: PackageAction = PackageAction.INSTALL
    display_name: str = ""
    enabled: bool = True
    installer: Optional[str] = None
    transform: Optional[str] = None
    patches: Tuple[str, ...] = ()
    arguments: Tuple[str, ...] = ()
    soft_fail: bool = False
    marker_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageEntry":
        data = _strip_comments(data)
        product_key = str(data.get("product_key") or "").strip()
        if not product_key:
            raise ConfigurationError(f"Catalog package is missing 'product_key': {data}")
        unknown = set(data) - {f for f in cls.__dataclass_fields__}
        if unknown:
            raise ConfigurationError(
                f"Unknown field(s) for package {product_key}: {', '.join(sorted(unknown))}"
            )
        return cls(
            product_key=product_key,
            action=PackageAction.parse(data.get("action", "Install")),
            display_name=data.get("display_name", ""),
            enabled=bool(data.get("enabled", True)),
            installer=data.get("installer"),
            transform=data.get("transform"),
            patches=_as_tuple(data.get("patches"), "patches"),
            arguments=_as_tuple(data.get("arguments"), "arguments"),
            soft_fail=bool(data.get("soft_fail", False)),
            marker_path=data.get("marker_path"),
        )


@dataclass(frozen=True)
class ExecutableEntry:
    """A plain executable run as part of a deployment."""

    path: str
    arguments: Tuple[str, ...] = ()
    wait: bool = True
    phase: Phase = Phase.POST
    deployment_type: DeploymentType = DeploymentType.INSTALL
    ignore_exit_codes: Tuple[int, ...] = ()
    soft_fail: bool = False
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutableEntry":
        data = _strip_comments(data)
        path = str(data.get("path") or "").strip()
        if not path:
            raise ConfigurationError(f"Catalog executable is missing 'path': {data}")
        try:
            ignore_codes = tuple(int(c) for c in _as_tuple(data.get("ignore_exit_codes"), "ignore_exit_codes"))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid ignore_exit_codes for {path}: {exc}") from exc
        return cls(
            path=path,
            arguments=_as_tuple(data.get("arguments"), "arguments"),
            wait=bool(data.get("wait", True)),
            phase=Phase.parse(data.get("phase", "Post")),
            deployment_type=DeploymentType.parse(data.get("deployment_type", "Install")),
            ignore_exit_codes=ignore_codes,
            soft_fail=bool(data.get("soft_fail", False)),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class Catalog:
    """The full set of rows a deployment can act on."""

    packages: List[PackageEntry] = field(default_factory=list)
    executables: List[ExecutableEntry] = field(default_factory=list)
    app_vendor: str = ""
    app_name: str = ""
    app_version: str = ""
    required_disk_mb: int = 0
    disk_check_path: Optional[str] = None
    install_title: str = ""

    @property
    def title(self) -> str:
        if self.install_title:
            return self.install_title
        parts = [p for p in (self.app_vendor, self.app_name, self.app_version) if p]
        return " ".join(parts) or "Application"

    @property
    def log_name(self) -> str:
        parts = [p for p in (self.app_vendor, self.app_name, self.app_version) if p]
        return "_".join(p.replace(" ", "") for p in parts) or "Deployment"

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Catalog":
        payload = _strip_comments(payload)
        packages = payload.get("packages", []) or []
        executables = payload.get("executables", []) or []
        if not isinstance(packages, list) or not isinstance(executables, list):
            raise ConfigurationError("'packages' and 'executables' must be lists")
        try:
            required_disk_mb = int(payload.get("required_disk_mb", 0) or 0)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid required_disk_mb: {exc}") from exc
        return cls(
            packages=[PackageEntry.from_dict(p) for p in packages],
            executables=[ExecutableEntry.from_dict(e) for e in executables],
            app_vendor=payload.get("app_vendor", ""),
            app_name=payload.get("app_name", ""),
            app_version=str(payload.get("app_version", "")),
            required_disk_mb=required_disk_mb,
            disk_check_path=payload.get("disk_check_path"),
            install_title=payload.get("install_title", ""),
        )


def load_catalog(path: str) -> Catalog:
    """Load a catalog from a JSON file.

    Relative ``installer``/``transform``/``patches`` paths are kept as written;
    the installer invoker resolves them against its working directory.
    """
    candidate = Path(path)
    if not candidate.is_file():
        raise ConfigurationError(f"Catalog file not found: {candidate}")
    try:
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Catalog {candidate} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Catalog {candidate} must contain a JSON object")
    return Catalog.from_dict(data)
