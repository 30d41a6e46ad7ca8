"""The buildkitd.toml configuration written before buildkitd starts."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import tomli_w

CONFIG_PATH = "/etc/buildkit/buildkitd.toml"


@dataclass
class GCPolicyRule:
    filters: list[str] = field(default_factory=list)
    keep_duration: int | None = None
    keep_bytes: int | None = None
    all: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.filters:
            out["filters"] = list(self.filters)
        if self.keep_duration is not None:
            out["keepDuration"] = self.keep_duration
        if self.keep_bytes is not None:
            out["keepBytes"] = self.keep_bytes
        if self.all:
            out["all"] = True
        return out


@dataclass
class OCIWorkerConfig:
    enabled: bool = False
    runc_binary_path: str = ""
    gc: bool = False
    gc_keep_storage: int | None = None
    gc_policy: list[GCPolicyRule] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "enabled": self.enabled,
            "binary": self.runc_binary_path,
            "gc": self.gc,
        }
        if self.gc_keep_storage is not None:
            out["gckeepstorage"] = self.gc_keep_storage
        if self.gc_policy:
            out["gcpolicy"] = [rule.to_dict() for rule in self.gc_policy]
        return out


@dataclass
class WorkerConfig:
    oci: OCIWorkerConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"oci": self.oci.to_dict()} if self.oci is not None else {}


@dataclass
class RegistryConfig:
    mirrors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"mirrors": list(self.mirrors)} if self.mirrors else {}


@dataclass
class GRPCConfig:
    debug_address: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"debugAddress": self.debug_address} if self.debug_address else {}


@dataclass
class BuildkitdConfig:
    debug: bool = False
    trace: bool = False
    worker: WorkerConfig | None = None
    registry: dict[str, RegistryConfig] = field(default_factory=dict)
    grpc: GRPCConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        """The configuration as the nested tables of buildkitd.toml."""
        out: dict[str, Any] = {"debug": self.debug, "trace": self.trace}
        if self.worker is not None:
            out["worker"] = self.worker.to_dict()
        if self.registry:
            out["registry"] = {name: rc.to_dict() for name, rc in self.registry.items()}
        if self.grpc is not None:
            out["grpc"] = self.grpc.to_dict()
        return out

    def to_toml(self) -> str:
        return tomli_w.dumps(self.to_dict())

    def save(self, path: str | os.PathLike = CONFIG_PATH) -> Path:
        """Write the configuration file, creating its directory."""
        target = Path(path)
        target.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
        target.write_text(self.to_toml(), encoding="utf-8")
        os.chmod(target, 0o644)
        return target

    def add_registry_mirrors(self, specs: Iterable[str]) -> None:
        """Add mirrors given as "registry=mirror" pairs."""
        for spec in specs:
            parts = spec.split("=")
            if len(parts) != 2:
                raise ValueError(f"invalid registry mirror specification: {spec}")
            key, value = parts
            self.registry.setdefault(key, RegistryConfig()).mirrors.append(value)


def default_config() -> BuildkitdConfig:
    """A fresh copy of the default buildkitd configuration."""
    return BuildkitdConfig(
        debug=False,
        trace=False,
        worker=WorkerConfig(
            oci=OCIWorkerConfig(
                enabled=True,
                runc_binary_path="/usr/bin/buildkit-runc",
                gc=True,
                gc_keep_storage=1 << 35,  # 32 GB
                gc_policy=[],
            )
        ),
        registry={},
        grpc=GRPCConfig(debug_address=""),
    )