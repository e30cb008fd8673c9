"""Docker Compose services deployed on the control VM, loaded from data/services.yaml."""

from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

DEFAULT_ACCEPTED_STATUSES = (200,)


@dataclass(frozen=True)
class ServiceDefinition:
    """One container of the compose stack."""

    name: str
    container: str
    port: Optional[int] = None
    path: str = "/"
    accept: Tuple[int, ...] = DEFAULT_ACCEPTED_STATUSES
    volumes: Tuple[str, ...] = ()

    @property
    def has_endpoint(self) -> bool:
        return self.port is not None

    def url(self, host: str) -> str:
        return f"http://{host}:{self.port}{self.path}"

    def accepts(self, status_code: int) -> bool:
        """2xx responses and explicitly accepted statuses count as healthy."""
        return 200 <= status_code < 300 or status_code in self.accept


@dataclass
class ServiceCatalog:
    compose_project: str
    services: List[ServiceDefinition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceCatalog":
        services = [
            ServiceDefinition(
                name=entry["name"],
                container=entry["container"],
                port=entry.get("port"),
                path=entry.get("path", "/"),
                accept=tuple(entry.get("accept", DEFAULT_ACCEPTED_STATUSES)),
                volumes=tuple(entry.get("volumes", [])),
            )
            for entry in data.get("services", [])
        ]
        return cls(compose_project=data["compose_project"], services=services)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ServiceCatalog":
        """Load the catalog from ``path`` or from the packaged default."""
        if path is None:
            text = resources.files("proxmox_dr").joinpath("data/services.yaml").read_text()
        else:
            text = Path(path).read_text()
        return cls.from_dict(yaml.safe_load(text))

    def volumes(self) -> List[str]:
        """All named volumes, in catalog order."""
        return [volume for service in self.services for volume in service.volumes]

    def volume_name(self, volume: str) -> str:
        """Docker volume name as created by compose (``<project>_<volume>``)."""
        return f"{self.compose_project}_{volume}"

    def endpoints(self) -> List[ServiceDefinition]:
        return [service for service in self.services if service.has_endpoint]

    def urls(self, host: str) -> Dict[str, str]:
        return {service.name: service.url(host) for service in self.endpoints()}
