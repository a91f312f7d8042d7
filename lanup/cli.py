#!/usr/bin/env python3
"""
lanup Command Line Interface

Usage:
    lanup start [--watch] [--no-env] [--dry-run] [--no-log]
    lanup expose URL [--name NAME] [--port PORT] [--https]
    lanup doctor
    lanup init [--format yaml] [--force]
    lanup logs [--tail N] [--follow] [--clear]

Examples:
    lanup init
    lanup start --watch
    lanup expose http://localhost:3000 --name web
    lanup logs -n 50

Every ``LanupError`` is printed once and turned into its exit code:
2 invalid configuration, 3 no usable network, 4 permission denied,
5 invalid URL, 1 anything else.

License: MIT
"""

import argparse
import asyncio
import os
import signal
import sys
import time
from collections import deque
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config_models import (
    DEFAULT_PROJECT_CONFIG_PATH,
    ConfigurationValidator,
    GlobalConfig,
    get_default_project_config,
)
from .errors import ErrorCode, InvalidConfigError, LanupError, NoUsableInterfaceError
from .lanup_service import LanupService, StartResult, run_health_checks
from .network_utils import detect_local_ip
from .utils import (
    get_logger,
    init_console,
    print_error,
    print_info,
    print_section,
    print_success,
    print_url,
    print_warning,
    setup_logging,
)
from .variable_resolver import expose_url, validate_expose_url

logger = get_logger("lanup")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lanup",
        description="Expose local services on your LAN",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
lanup detects your local IP address, rewrites localhost URLs to it and keeps
a generated env file in sync, so any device on the same network can reach
your development services.
        """
    )
    parser.add_argument("--version", action="version", version=f"lanup {__version__}")
    parser.add_argument("--config", help="global config file (default: ~/.lanup/config.yaml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable verbose output")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    start = subparsers.add_parser("start", help="Start exposing local services on your LAN")
    start.add_argument("-w", "--watch", action="store_true",
                       help="watch for network changes and update automatically")
    start.add_argument("--no-env", action="store_true", help="display variables without writing to file")
    start.add_argument("--dry-run", action="store_true", help="simulate all operations without writing files")
    start.add_argument("--no-log", action="store_true", help="disable logging to file")
    start.add_argument("--project", default=DEFAULT_PROJECT_CONFIG_PATH,
                       help=f"project config file (default: {DEFAULT_PROJECT_CONFIG_PATH})")
    start.set_defaults(handler=cmd_start)

    expose = subparsers.add_parser("expose", help="Quickly expose a single service without configuration")
    expose.add_argument("url", help="localhost URL, e.g. http://localhost:3000")
    expose.add_argument("--name", default="", help="assign an alias to the exposed service")
    expose.add_argument("--port", type=int, default=0, help="use a custom port instead of the original")
    expose.add_argument("--https", action="store_true", help="use HTTPS protocol instead of HTTP")
    expose.set_defaults(handler=cmd_expose)

    doctor = subparsers.add_parser("doctor", help="Diagnose your local environment")
    doctor.set_defaults(handler=cmd_doctor)

    init = subparsers.add_parser("init", help="Initialize lanup configuration in the current project")
    init.add_argument("--format", default="yaml", help="configuration file format (yaml)")
    init.add_argument("--force", action="store_true", help="overwrite existing configuration file")
    init.set_defaults(handler=cmd_init)

    logs = subparsers.add_parser("logs", help="View or manage lanup logs")
    logs.add_argument("-n", "--tail", type=int, default=0, help="show last N lines (0 = show all)")
    logs.add_argument("-f", "--follow", action="store_true", help="follow log output in real-time")
    logs.add_argument("--clear", action="store_true", help="clear the log file (requires confirmation)")
    logs.set_defaults(handler=cmd_logs, log_to_file=False)

    return parser


# ==================== start ====================

def _display_variables(result: StartResult, dry_run: bool) -> None:
    if dry_run:
        print_info("Dry run mode - no files will be modified")
        print()
    print_success(f"Detected local IP: {result.candidate.address}")
    print()
    if result.variables:
        print_section("Environment Variables")
        for var in result.variables:
            print(f"  {var.key}={var.value}")


def _display_success(result: StartResult) -> None:
    print_success("Successfully exposed services on your LAN!")
    print_success(f"Environment file updated: {result.output_path}")
    print_success(f"Local IP: {result.candidate.address}")
    print()
    urls = [v for v in result.variables if v.value.startswith("http")]
    if urls:
        print_section("Your services are now accessible at")
        for var in urls:
            print_url(var.key, var.value)
        print()
    print_info("Tip: Use 'lanup start --watch' to automatically update when your network changes")


def _display_result(result: StartResult, args) -> None:
    for warning in result.warnings:
        print_warning(warning)
    if result.written:
        _display_success(result)
    else:
        _display_variables(result, args.dry_run)


async def _watch(service: LanupService, args) -> None:
    def regenerated(old_ip: str, new_ip: str, result: StartResult) -> None:
        print()
        print_warning("Network change detected!")
        print(f"  Old IP: {old_ip}")
        print(f"  New IP: {new_ip}")
        print()
        _display_result(result, args)
        print()

    def failed(old_ip: str, new_ip: str, error: LanupError) -> None:
        print_warning(f"Network change detected ({old_ip} -> {new_ip})")
        print_error(f"Failed to regenerate env file: {error}")

    watcher = service.create_watcher(on_regenerated=regenerated, on_failed=failed)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, watcher.stop)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers
            pass

    await watcher.start()


def cmd_start(args, global_config: GlobalConfig) -> int:
    validator = ConfigurationValidator()
    project_config = validator.load_project_config(args.project)

    logger.info(f"Starting lanup (watch={args.watch})")
    service = LanupService(
        project_config,
        global_config,
        dry_run=args.dry_run,
        no_env=args.no_env,
    )

    try:
        result = service.execute_start()
    except LanupError as e:
        logger.error(f"Start failed: {e}")
        raise
    _display_result(result, args)

    if args.watch:
        print()
        print_info("Watch mode enabled - monitoring network changes...")
        print("Press Ctrl+C to stop")
        print()
        try:
            asyncio.run(_watch(service, args))
        except KeyboardInterrupt:
            pass
        print()
        print("Shutting down gracefully...")
        logger.info("Watch mode stopped by user")

    return 0


# ==================== expose ====================

def cmd_expose(args, global_config: GlobalConfig) -> int:
    validate_expose_url(args.url)
    candidate = detect_local_ip()
    network_url = expose_url(args.url, candidate.address, port=args.port or None, https=args.https)

    print_success("Successfully exposed service on your LAN!")
    print_success(f"Local IP: {candidate.address}")
    print()
    if args.name:
        print(f"📌 Service name: {args.name}")
    print("🌐 Original URL:")
    print(f"  {args.url}")
    print()
    print("🌐 Network URL:")
    print(f"  {network_url}")
    print()
    print_info("Tip: Use 'lanup init' to configure multiple services in your project")
    return 0


# ==================== doctor ====================

def cmd_doctor(args, global_config: GlobalConfig) -> int:
    print_section("Running lanup diagnostics")

    checks = run_health_checks()
    all_passed = True
    for check in checks:
        if check.status:
            print_success(check.name)
        else:
            print_error(check.name)
            all_passed = False
        if check.message:
            print(f"   {check.message}")

    print()
    if all_passed:
        print_success("All checks passed! lanup is ready to use.")
        return 0

    print_warning("Some checks failed. Please review the issues above.")
    raise NoUsableInterfaceError("Health checks failed")


# ==================== init ====================

def cmd_init(args, global_config: GlobalConfig) -> int:
    if args.format not in ("yaml", "toml"):
        raise InvalidConfigError(f"Unsupported format: {args.format} (supported: yaml)")
    if args.format == "toml":
        raise InvalidConfigError("TOML format is not yet supported, please use yaml")

    config_path = Path(DEFAULT_PROJECT_CONFIG_PATH)
    if config_path.exists():
        if not args.force:
            raise InvalidConfigError(
                f"Configuration file already exists at {config_path}\nUse --force to overwrite")
        print_warning(f"Overwriting existing configuration file at {config_path}")

    ConfigurationValidator().save_project_config(get_default_project_config(), str(config_path))

    print_success("Configuration file created successfully!")
    print_info(f"Location: {config_path.resolve()}")
    print()
    print_section("Next steps")
    print(f"  1. Edit {config_path} to configure your services")
    print("  2. Run 'lanup start' to expose your services on the LAN")
    return 0


# ==================== logs ====================

LOG_POLL_INTERVAL = 0.5


def _log_read_error(log_path: Path, e: OSError) -> LanupError:
    code = ErrorCode.PERMISSION_DENIED if isinstance(e, PermissionError) else ErrorCode.FILE_NOT_FOUND
    return LanupError(f"Failed to read log file {log_path}", cause=e, code=code)


def _show_log(log_path: Path, tail: int) -> int:
    if not log_path.exists():
        print("No log file found. Logs will be created when lanup runs.")
        return 0
    try:
        with open(log_path, encoding="utf-8", errors="replace") as log_file:
            if tail > 0:
                lines = deque((line for line in log_file if line.strip()), maxlen=tail)
            else:
                lines = list(log_file)
    except OSError as e:
        raise _log_read_error(log_path, e) from e

    for line in lines:
        print(line.rstrip("\n"))
    return 0


def _follow_log(log_path: Path) -> int:
    if not log_path.exists():
        print("Waiting for log file to be created...")
        while not log_path.exists():
            time.sleep(LOG_POLL_INTERVAL)

    try:
        log_file = open(log_path, encoding="utf-8", errors="replace")
    except OSError as e:
        raise _log_read_error(log_path, e) from e

    try:
        log_file.seek(0, os.SEEK_END)
        print("Following log file (Ctrl+C to stop)...")
        while True:
            line = log_file.readline()
            if line:
                print(line.rstrip("\n"), flush=True)
                continue

            time.sleep(LOG_POLL_INTERVAL)
            try:
                on_disk = os.stat(log_path)
            except FileNotFoundError:
                print("Log file was removed or rotated. Exiting.")
                return 0
            if on_disk.st_ino != os.fstat(log_file.fileno()).st_ino:
                # Rotated by RotatingFileHandler, continue with the new file
                log_file.close()
                log_file = open(log_path, encoding="utf-8", errors="replace")
    except KeyboardInterrupt:
        print()
        return 0
    except OSError as e:
        raise _log_read_error(log_path, e) from e
    finally:
        log_file.close()


def _clear_log(log_path: Path) -> int:
    if not log_path.exists():
        print("No log file found.")
        return 0

    try:
        answer = input("Are you sure you want to clear the log file? (y/N): ")
    except EOFError:
        answer = ""
    if answer.strip().lower() not in ("y", "yes"):
        print("Operation cancelled.")
        return 0

    rotated = [p for p in log_path.parent.glob(f"{log_path.name}.*") if p.suffix[1:].isdigit()]
    try:
        for path in [log_path] + rotated:
            path.unlink()
    except OSError as e:
        raise LanupError(f"Failed to clear log file {log_path}", cause=e, code=ErrorCode.PERMISSION_DENIED) from e

    print_success("Log file cleared successfully.")
    return 0


def cmd_logs(args, global_config: GlobalConfig) -> int:
    if args.tail < 0:
        raise InvalidConfigError(f"--tail must be zero or a positive number, got {args.tail}")

    log_path = Path(global_config.log_path).expanduser()
    if args.clear:
        return _clear_log(log_path)
    if args.follow:
        return _follow_log(log_path)
    return _show_log(log_path, args.tail)


# ==================== entry point ====================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Parse arguments, configure logging and run the selected command.

    Returns:
        int: Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    init_console()

    try:
        global_config = ConfigurationValidator().load_global_config(args.config)
        if args.verbose:
            global_config.log_level = "debug"

        file_logging = getattr(args, "log_to_file", True) and not getattr(args, "no_log", False)
        setup_logging(
            global_config.log_level,
            global_config.log_path if file_logging else None,
            console=args.verbose,
        )

        return args.handler(args, global_config)
    except LanupError as e:
        print_error(str(e))
        return e.exit_code


if __name__ == "__main__":
    sys.exit(main())
