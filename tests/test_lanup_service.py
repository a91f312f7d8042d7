import asyncio

import pytest

from lanup.env_manager import EnvFileManager, EnvVar
from lanup.errors import EnvParseError, NoUsableInterfaceError, ProviderUnavailableError
from lanup.ip_watcher import IPWatcher, WatcherState
from lanup.lanup_service import (
    HealthCheck,
    LanupService,
    check_docker,
    check_network_interfaces,
    check_supabase,
    run_health_checks,
)
from lanup.network_utils import InterfaceClass, InterfaceScanner, NetworkCandidate
from lanup.service_inspector import DockerProvider, SupabaseProvider
from tests.conftest import ipv4, stats


class FailingProvider:
    name = "docker"

    def collect(self):
        raise ProviderUnavailableError("docker is not available")


@pytest.fixture
def lan_interfaces(fake_interfaces):
    fake_interfaces(
        {"docker0": [ipv4("172.17.0.1")], "wlan0": [ipv4("192.168.1.100")]},
        {"docker0": stats(), "wlan0": stats()},
    )


def test_providers_built_from_config(project_config):
    project_config.auto_detect.docker = True
    service = LanupService(project_config)
    assert [type(p) for p in service.providers] == [DockerProvider]

    project_config.auto_detect.supabase = True
    service = LanupService(project_config)
    assert [type(p) for p in service.providers] == [DockerProvider, SupabaseProvider]


def test_execute_start_writes_env_file(project_config, global_config, lan_interfaces, tmp_path):
    """The full pipeline rewrites loopback URLs and writes the managed file."""
    service = LanupService(project_config, global_config)

    result = service.execute_start()

    assert result.written is True
    assert result.candidate.address == "192.168.1.100"
    assert result.candidate.interface_class is InterfaceClass.WIFI
    assert [(v.key, v.value) for v in result.variables] == [
        ("API_URL", "http://192.168.1.100:8000"),
        ("SUPABASE_URL", "http://192.168.1.100:54321"),
        ("ANON_KEY", "your-anon-key"),
    ]
    content = (tmp_path / ".env.local").read_text()
    assert "API_URL=http://192.168.1.100:8000" in content
    assert content.count("# lanup:managed") == 3


def test_execute_start_preserves_user_variables(project_config, global_config, lan_interfaces, tmp_path):
    env_file = tmp_path / ".env.local"
    env_file.write_text("SECRET_KEY=keep-me\n# lanup:managed\nOLD_URL=http://10.0.0.1:1\n")

    LanupService(project_config, global_config).execute_start()

    variables = EnvFileManager(env_file).read()
    assert EnvVar("SECRET_KEY", "keep-me", False) in variables
    assert "OLD_URL" not in [v.key for v in variables]
    assert (tmp_path / ".env.local.bak").exists()


def test_execute_start_repeated_runs_keep_user_file_readable(project_config, global_config, lan_interfaces,
                                                             tmp_path):
    """Quoted and padded user values survive any number of runs."""
    env_file = tmp_path / ".env.local"
    env_file.write_text('GREETING="  padded  "\nNESTED="\'inner\'"\n')
    service = LanupService(project_config, global_config)

    service.execute_start()
    service.execute_start()

    values = {v.key: v.value for v in EnvFileManager(env_file).read()}
    assert values["GREETING"] == "  padded  "
    assert values["NESTED"] == "'inner'"
    assert values["API_URL"] == "http://192.168.1.100:8000"


@pytest.mark.parametrize("flags", [{"dry_run": True}, {"no_env": True}])
def test_execute_start_without_writing(project_config, global_config, lan_interfaces, tmp_path, flags):
    """Dry runs and --no-env resolve variables but never touch the file."""
    service = LanupService(project_config, global_config, **flags)

    result = service.execute_start()

    assert result.written is False
    assert len(result.variables) == 3
    assert not (tmp_path / ".env.local").exists()


def test_execute_start_with_explicit_candidate(project_config, global_config):
    """A supplied candidate skips detection."""
    scanner = InterfaceScanner()
    service = LanupService(project_config, global_config, no_env=True, scanner=scanner)
    candidate = NetworkCandidate("10.0.0.5", "eth0", InterfaceClass.ETHERNET)

    result = service.execute_start(candidate)

    assert result.candidate is candidate
    assert result.variables[0].value == "http://10.0.0.5:8000"


def test_execute_start_unavailable_provider(project_config, global_config, lan_interfaces):
    """An unavailable provider is a warning, not a failure."""
    service = LanupService(project_config, global_config, no_env=True, providers=[FailingProvider()])

    result = service.execute_start()

    assert len(result.variables) == 3
    assert result.warnings == ["docker provider unavailable: docker is not available"]


def test_execute_start_no_network(project_config, global_config, fake_interfaces, tmp_path):
    fake_interfaces({}, {})
    with pytest.raises(NoUsableInterfaceError):
        LanupService(project_config, global_config).execute_start()
    assert not (tmp_path / ".env.local").exists()


def test_execute_start_malformed_env_file(project_config, global_config, lan_interfaces, tmp_path):
    """A malformed existing file aborts the merge and is left untouched."""
    env_file = tmp_path / ".env.local"
    env_file.write_text("this line is broken\n")

    with pytest.raises(EnvParseError):
        LanupService(project_config, global_config).execute_start()

    assert env_file.read_text() == "this line is broken\n"


def test_create_watcher_uses_check_interval(project_config, global_config):
    watcher = LanupService(project_config, global_config).create_watcher()
    assert isinstance(watcher, IPWatcher)
    assert watcher.interval == 1.0


@pytest.mark.asyncio
async def test_watcher_regenerates_on_change(project_config, global_config, mocker, tmp_path):
    """An address change rewrites the env file with the new address."""
    current = {"address": "192.168.1.100"}

    service = LanupService(project_config, global_config)
    mocker.patch.object(
        service, "detect",
        side_effect=lambda: NetworkCandidate(current["address"], "wlan0", InterfaceClass.WIFI),
    )
    service.execute_start()

    regenerated = []
    watcher = service.create_watcher(on_regenerated=lambda old, new, result: regenerated.append((old, new)))
    watcher.interval = 0.01

    task = asyncio.create_task(watcher.start())
    while watcher.state is not WatcherState.RUNNING:
        await asyncio.sleep(0.005)
    current["address"] = "192.168.1.101"
    for _ in range(200):
        if regenerated:
            break
        await asyncio.sleep(0.01)
    watcher.stop()
    await asyncio.wait_for(task, timeout=1)

    assert regenerated == [("192.168.1.100", "192.168.1.101")]
    assert "http://192.168.1.101:8000" in (tmp_path / ".env.local").read_text()


def test_watcher_reports_regeneration_failure(project_config, global_config, mocker):
    """A failed rerun goes to on_failed instead of escaping the callback."""
    failures = []
    service = LanupService(project_config, global_config)
    mocker.patch.object(service, "execute_start", side_effect=EnvParseError("broken", line_number=1))

    watcher = service.create_watcher(on_failed=lambda old, new, error: failures.append(error))
    watcher.on_change("192.168.1.100", "192.168.1.101")

    assert len(failures) == 1
    assert isinstance(failures[0], EnvParseError)


# ==================== diagnostics ====================

def test_check_network_interfaces_ok(lan_interfaces):
    check = check_network_interfaces()
    assert check.status is True
    assert "192.168.1.100" in check.message


def test_check_network_interfaces_failed(fake_interfaces):
    fake_interfaces({}, {})
    check = check_network_interfaces()
    assert check.status is False


def test_check_docker_not_available(mocker):
    mocker.patch("lanup.lanup_service.is_docker_available", return_value=False)
    assert check_docker() == HealthCheck(name="Docker", status=False,
                                         message="Docker is not installed or not running")


def test_check_docker_running(mocker):
    mocker.patch("lanup.lanup_service.is_docker_available", return_value=True)
    mocker.patch("lanup.lanup_service.get_running_containers", return_value=[])
    check = check_docker()
    assert check.status is True
    assert "no containers" in check.message


def test_check_supabase_not_running(mocker):
    mocker.patch("lanup.lanup_service.get_supabase_status",
                 side_effect=ProviderUnavailableError("supabase is not installed or not in PATH"))
    assert check_supabase().status is False


def test_run_health_checks_order(mocker, lan_interfaces):
    mocker.patch("lanup.lanup_service.is_docker_available", return_value=False)
    mocker.patch("lanup.lanup_service.get_supabase_status", return_value={"api_url": 54321})
    checks = run_health_checks()
    assert [c.name for c in checks] == ["Network Interfaces", "Docker", "Supabase"]
    assert [c.status for c in checks] == [True, False, True]
