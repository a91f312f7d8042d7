#!/usr/bin/env python3
"""
lanup Service

Orchestrates the full pipeline behind ``lanup start``:

    detect address -> collect templates -> rewrite URLs -> merge env file

and wires the same pipeline to the network watcher for ``--watch`` mode. Also
hosts the diagnostics behind ``lanup doctor``.

The service is constructed once with explicit configuration objects; it does
no console output of its own. Results are returned to the CLI, which decides
how to present them.

License: MIT
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config_models import GlobalConfig, ProjectConfig
from .env_manager import EnvFileManager, EnvVar
from .errors import LanupError, ProviderUnavailableError
from .ip_watcher import IPWatcher
from .network_utils import InterfaceScanner, NetworkCandidate, detect_local_ip
from .service_inspector import build_providers, get_running_containers, get_supabase_status, is_docker_available
from .utils import get_logger
from .variable_resolver import collect_variables, resolve_variables


@dataclass
class StartResult:
    """
    Outcome of one pipeline run.

    Attributes:
        candidate (NetworkCandidate): Selected address.
        variables (List[EnvVar]): Resolved managed variables.
        written (bool): False for dry-run and no-env runs.
        output_path (Path): Env file the variables belong to.
        warnings (List[str]): Non-fatal problems, e.g. an unavailable provider.
    """
    candidate: NetworkCandidate
    variables: List[EnvVar]
    written: bool
    output_path: Path
    warnings: List[str] = field(default_factory=list)


@dataclass
class HealthCheck:
    """Result of one ``lanup doctor`` check."""
    name: str
    status: bool
    message: str = ""


class LanupService:
    """
    Runs the resolve + merge + write pipeline for one project.

    Attributes:
        project_config (ProjectConfig): Variables, output path and providers.
        global_config (GlobalConfig): Watcher interval and logging settings.
        dry_run (bool): Resolve only, never write.
        no_env (bool): Resolve only, never write.

    Example:
        ```python
        service = LanupService(project_config, global_config)
        result = service.execute_start()
        print(result.candidate.address, len(result.variables))
        ```
    """

    def __init__(self,
                 project_config: ProjectConfig,
                 global_config: Optional[GlobalConfig] = None,
                 dry_run: bool = False,
                 no_env: bool = False,
                 scanner: Optional[InterfaceScanner] = None,
                 providers: Optional[Sequence[object]] = None,
                 env_manager: Optional[EnvFileManager] = None,
                 logger: Optional[logging.Logger] = None):
        self.project_config = project_config
        self.global_config = global_config or GlobalConfig()
        self.dry_run = dry_run
        self.no_env = no_env
        self.logger = logger or get_logger("lanup.service")

        self.scanner = scanner or InterfaceScanner()
        if providers is None:
            providers = build_providers(
                docker=project_config.auto_detect.docker,
                supabase=project_config.auto_detect.supabase,
            )
        self.providers = list(providers)
        self.env_manager = env_manager or EnvFileManager(project_config.output)

    def detect(self) -> NetworkCandidate:
        """Run one selection cycle with this service's scanner."""
        return detect_local_ip(self.scanner)

    def execute_start(self, candidate: Optional[NetworkCandidate] = None) -> StartResult:
        """
        Run the pipeline once.

        Args:
            candidate: Address to use; detected when omitted.

        Returns:
            StartResult: What was resolved and whether it was written.

        Raises:
            NoUsableInterfaceError: If no address can be selected.
            ProviderOutputError: If a provider returns malformed output.
            EnvParseError: If the existing env file is malformed.
            EnvPermissionError: If the env file cannot be read or written.
        """
        candidate = candidate or self.detect()
        self.logger.info(f"Detected IP {candidate.address} on {candidate.interface_name} "
                         f"({candidate.interface_class.value})")

        warnings: List[str] = []
        templates = collect_variables(self.project_config, self.providers, warnings)
        variables = resolve_variables(templates, candidate.address)

        result = StartResult(
            candidate=candidate,
            variables=variables,
            written=False,
            output_path=self.env_manager.file_path,
            warnings=warnings,
        )

        if self.dry_run or self.no_env:
            self.logger.info(f"Resolved {len(variables)} variable(s), not writing "
                             f"({'dry run' if self.dry_run else 'no-env'})")
            return result

        self.env_manager.update(variables)
        result.written = True
        self.logger.info(f"Updated env file {self.env_manager.file_path} with {len(variables)} variable(s)")
        return result

    def create_watcher(self,
                       on_regenerated: Optional[Callable[[str, str, StartResult], None]] = None,
                       on_failed: Optional[Callable[[str, str, LanupError], None]] = None) -> IPWatcher:
        """
        Build a watcher that re-runs the pipeline whenever the address changes.

        Pipeline errors inside the callback are logged and passed to
        ``on_failed``; the watcher keeps running.

        Args:
            on_regenerated: Called with ``(old_ip, new_ip, result)`` after a successful run.
            on_failed: Called with ``(old_ip, new_ip, error)`` when the run fails.
        """

        def regenerate(old_ip: str, new_ip: str) -> None:
            self.logger.info(f"Regenerating env file: old_ip={old_ip} new_ip={new_ip}")
            try:
                result = self.execute_start()
            except LanupError as e:
                self.logger.error(f"Failed to regenerate env file: {e}")
                if on_failed is not None:
                    on_failed(old_ip, new_ip, e)
                return
            if on_regenerated is not None:
                on_regenerated(old_ip, new_ip, result)

        return IPWatcher(
            interval=self.global_config.check_interval,
            on_change=regenerate,
            detector=self.detect,
        )


# ==================== DIAGNOSTICS ====================

def check_network_interfaces(scanner: Optional[InterfaceScanner] = None) -> HealthCheck:
    try:
        candidate = detect_local_ip(scanner)
    except LanupError as e:
        return HealthCheck(name="Network Interfaces", status=False,
                           message=f"Failed to detect local IP: {e}")
    return HealthCheck(
        name="Network Interfaces",
        status=True,
        message=f"Detected IP: {candidate.address} on interface {candidate.interface_name} "
                f"({candidate.interface_class.value})",
    )


def check_docker() -> HealthCheck:
    if not is_docker_available():
        return HealthCheck(name="Docker", status=False, message="Docker is not installed or not running")
    try:
        containers = get_running_containers()
    except LanupError as e:
        return HealthCheck(name="Docker", status=False,
                           message=f"Docker is available but failed to list containers: {e}")
    if not containers:
        return HealthCheck(name="Docker", status=True,
                           message="Docker is running (no containers currently active)")
    return HealthCheck(name="Docker", status=True,
                       message=f"Docker is running with {len(containers)} active container(s)")


def check_supabase() -> HealthCheck:
    try:
        services = get_supabase_status()
    except ProviderUnavailableError as e:
        return HealthCheck(name="Supabase", status=False, message=f"Supabase local is not running: {e}")
    except LanupError as e:
        return HealthCheck(name="Supabase", status=False,
                           message=f"Supabase CLI is available but no services detected: {e}")
    return HealthCheck(name="Supabase", status=True,
                       message=f"Supabase local is running with {len(services)} service(s)")


def run_health_checks(scanner: Optional[InterfaceScanner] = None) -> List[HealthCheck]:
    """Run every ``lanup doctor`` check in display order."""
    return [
        check_network_interfaces(scanner),
        check_docker(),
        check_supabase(),
    ]
