"""Control VM health checks: system, Docker, services, ports, endpoints and tools."""

import logging
import socket
from dataclasses import dataclass, field
from typing import Any, List, Optional

import docker
import requests
from docker.errors import DockerException, NotFound
from rich.table import Table

from proxmox_dr.config import ControlVMSettings
from proxmox_dr.console import console
from proxmox_dr.service_catalog import ServiceCatalog, ServiceDefinition
from proxmox_dr.shell import LocalShell, Shell

logger = logging.getLogger(__name__)

PASS = "pass"
FAIL = "fail"
WARN = "warn"

DISK_LIMIT = 80
MEMORY_LIMIT = 90
PASS_THRESHOLD = 80


@dataclass
class CheckResult:
    """Outcome of a single check."""

    category: str
    name: str
    status: str
    detail: str = ""


@dataclass
class HealthReport:
    """Check tallies. Warnings count towards the total but not as passed."""

    results: List[CheckResult] = field(default_factory=list)

    def add(self, category: str, name: str, status: str, detail: str = "") -> CheckResult:
        result = CheckResult(category, name, status, detail)
        self.results.append(result)
        log = {PASS: logger.info, WARN: logger.warning, FAIL: logger.error}[status]
        log(f"[{status.upper()}] {name}{f' ({detail})' if detail else ''}")
        return result

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.status == PASS)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == FAIL)

    @property
    def pass_percentage(self) -> int:
        return self.passed * 100 // self.total if self.total else 0

    @property
    def exit_code(self) -> int:
        """0 when nothing failed, 1 when at least 80% passed, 2 otherwise."""
        if self.failed == 0:
            return 0
        if self.pass_percentage >= PASS_THRESHOLD:
            return 1
        return 2


class HealthChecker:
    """Runs every health check against the local control VM."""

    def __init__(
        self,
        settings: ControlVMSettings,
        catalog: Optional[ServiceCatalog] = None,
        shell: Optional[Shell] = None,
        docker_client: Any = None,
        host: str = "localhost",
    ):
        """Initialize health checker.

        Args:
            settings: Control VM settings
            catalog: Services to check (defaults to the packaged catalog)
            shell: Shell for system commands
            docker_client: Docker SDK client (created lazily when omitted)
            host: Host the services are probed on
        """
        self.settings = settings
        self.catalog = catalog or ServiceCatalog.load()
        self.shell = shell or LocalShell()
        self._docker = docker_client
        self.host = host
        self.report = HealthReport()

    @property
    def docker(self) -> Any:
        if self._docker is None:
            self._docker = docker.from_env()
        return self._docker

    def _percent(self, command: str) -> Optional[int]:
        result = self.shell.run(command, check=False)
        try:
            return int(result.stdout.strip().rstrip("%"))
        except ValueError:
            return None

    def check_system(self) -> None:
        disk = self._percent("df --output=pcent / | tail -n1")
        if disk is None:
            self.report.add("system", "Disk space unknown", WARN, "could not read df output")
        elif disk < DISK_LIMIT:
            self.report.add("system", "Disk space", PASS, f"{disk}% used")
        else:
            self.report.add("system", "Disk space critical", FAIL, f"{disk}% used")

        memory = self._percent("free | awk '/Mem:/ {printf \"%.0f\", ($3/$2)*100}'")
        if memory is None:
            self.report.add("system", "Memory usage unknown", WARN, "could not read free output")
        elif memory < MEMORY_LIMIT:
            self.report.add("system", "Memory usage", PASS, f"{memory}%")
        else:
            self.report.add("system", "Memory usage high", WARN, f"{memory}%")

        mount = self.settings.backup_mount
        if self.shell.succeeds(f"mountpoint -q {mount}"):
            self.report.add("system", "Backup mount available", PASS, str(mount))
        else:
            self.report.add("system", "Backup mount not available", FAIL, str(mount))

    def check_docker(self) -> None:
        if self.shell.succeeds("systemctl is-active --quiet docker"):
            self.report.add("docker", "Docker daemon running", PASS)
        else:
            self.report.add("docker", "Docker daemon not running", FAIL)

        if self.shell.succeeds("docker compose version"):
            self.report.add("docker", "Docker Compose available", PASS)
        else:
            self.report.add("docker", "Docker Compose not available", FAIL)

    def check_service(self, service: ServiceDefinition) -> None:
        try:
            container = self.docker.containers.get(service.container)
        except NotFound:
            self.report.add("services", f"Service not running: {service.name}", FAIL)
            self.report.add("services", f"No health check defined for: {service.name}", WARN, "container missing")
            return

        if container.status == "running":
            self.report.add("services", f"Service running: {service.name}", PASS)
        else:
            self.report.add("services", f"Service not running: {service.name}", FAIL, container.status)

        health = container.attrs.get("State", {}).get("Health", {}).get("Status", "none")
        if health == "healthy":
            self.report.add("services", f"Service healthy: {service.name}", PASS)
        elif health == "none":
            self.report.add("services", f"No health check defined for: {service.name}", WARN)
        else:
            self.report.add("services", f"Service unhealthy: {service.name}", FAIL, health)

    def check_services(self) -> None:
        if not self.settings.compose_dir.is_dir():
            self.report.add("services", "Compose directory not found", FAIL, str(self.settings.compose_dir))
            return
        try:
            self.docker.ping()
        except DockerException as e:
            self.report.add("services", "Docker API unreachable", FAIL, str(e))
            return
        for service in self.catalog.services:
            self.check_service(service)

    def port_listening(self, port: int) -> bool:
        try:
            with socket.create_connection((self.host, port), timeout=2):
                return True
        except OSError:
            return False

    def check_ports(self) -> None:
        for service in self.catalog.endpoints():
            if self.port_listening(service.port):
                self.report.add("network", f"Port listening: {service.name}", PASS, str(service.port))
            else:
                self.report.add("network", f"Port not listening: {service.name}", FAIL, str(service.port))

    def check_endpoints(self) -> None:
        for service in self.catalog.endpoints():
            url = service.url(self.host)
            try:
                status_code = requests.get(url, timeout=5).status_code
            except requests.RequestException:
                status_code = 0
            if service.accepts(status_code):
                self.report.add("http", f"HTTP endpoint responding: {service.name}", PASS, str(status_code))
            else:
                self.report.add("http", f"HTTP endpoint failed: {service.name}", FAIL, str(status_code))

    def check_tools(self) -> None:
        for tool, command, field_index in (
            ("Terraform", "terraform version", 1),
            ("Ansible", "ansible --version", 2),
            ("Packer", "packer version", 1),
            ("Git", "git --version", 2),
        ):
            result = self.shell.run(f"{command} 2>/dev/null | head -n1", check=False)
            words = result.stdout.split()
            if result.ok and words:
                version = words[field_index] if len(words) > field_index else words[-1]
                self.report.add("tools", f"{tool} installed", PASS, version.strip("[]"))
            else:
                self.report.add("tools", f"{tool} not installed", FAIL)

    def run(self) -> HealthReport:
        self.report = HealthReport()
        self.check_system()
        self.check_docker()
        self.check_services()
        self.check_ports()
        self.check_endpoints()
        self.check_tools()
        return self.report


def print_report(report: HealthReport) -> None:
    table = Table(title="Control VM Health Check")
    table.add_column("Category", style="cyan")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Detail")
    colors = {PASS: "green", WARN: "yellow", FAIL: "red"}
    for r in report.results:
        table.add_row(r.category, r.name, f"[{colors[r.status]}]{r.status.upper()}[/{colors[r.status]}]", r.detail)
    console.print(table)

    console.print(f"Total Checks:  {report.total}")
    console.print(f"Passed:        [green]{report.passed}[/green]")
    console.print(f"Failed:        [red]{report.failed}[/red]")
    if report.exit_code == 0:
        console.print("[green]✅ All checks passed! Control VM is healthy.[/green]")
    elif report.exit_code == 1:
        console.print(f"[yellow]⚠️  Most checks passed but some issues detected ({report.pass_percentage}% success)[/yellow]")
    else:
        console.print(f"[red]❌ Critical issues detected ({report.pass_percentage}% success)[/red]")
