import pytest
import yaml

from lanup import __version__
from lanup.cli import build_parser, main
from tests.conftest import ipv4, stats


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Runs each CLI call from an empty project directory with a private global config."""
    for name in ("LANUP_LOG_LEVEL", "LANUP_LOG_PATH", "LANUP_CHECK_INTERVAL", "LANUP_OUTPUT"):
        monkeypatch.delenv(name, raising=False)
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)

    global_config = tmp_path / "config.yaml"
    global_config.write_text(yaml.safe_dump({
        "log_path": str(tmp_path / "logs" / "lanup.log"),
        "log_level": "info",
        "check_interval": 5,
    }))
    return project, ["--config", str(global_config)]


@pytest.fixture
def lan_interfaces(fake_interfaces):
    fake_interfaces({"wlan0": [ipv4("192.168.1.100")]}, {"wlan0": stats()})


def write_project(project, data):
    (project / ".lanup.yaml").write_text(yaml.safe_dump(data))


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_version(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])
    assert exc_info.value.code == 0
    assert __version__ in capsys.readouterr().out


# ==================== init ====================

def test_init_creates_project_config(workspace):
    project, config_args = workspace

    assert main(config_args + ["init"]) == 0

    data = yaml.safe_load((project / ".lanup.yaml").read_text())
    assert data["output"] == ".env.local"
    assert data["vars"]["API_URL"] == "http://localhost:8000"


def test_init_refuses_to_overwrite(workspace, capsys):
    project, config_args = workspace
    write_project(project, {"vars": {"KEEP": "me"}})

    assert main(config_args + ["init"]) == 2
    assert "--force" in capsys.readouterr().err
    assert yaml.safe_load((project / ".lanup.yaml").read_text()) == {"vars": {"KEEP": "me"}}


def test_init_force_overwrites(workspace):
    project, config_args = workspace
    write_project(project, {"vars": {"KEEP": "me"}})

    assert main(config_args + ["init", "--force"]) == 0
    assert "KEEP" not in yaml.safe_load((project / ".lanup.yaml").read_text())["vars"]


@pytest.mark.parametrize("fmt", ["toml", "json"])
def test_init_unsupported_format(workspace, fmt):
    _, config_args = workspace
    assert main(config_args + ["init", "--format", fmt]) == 2


# ==================== start ====================

def test_start_writes_env_file(workspace, lan_interfaces, capsys):
    project, config_args = workspace
    write_project(project, {"vars": {"API_URL": "http://localhost:8000"}, "output": ".env.local"})

    assert main(config_args + ["start"]) == 0

    assert "API_URL=http://192.168.1.100:8000" in (project / ".env.local").read_text()
    out = capsys.readouterr().out
    assert "192.168.1.100" in out


def test_start_dry_run(workspace, lan_interfaces, capsys):
    project, config_args = workspace
    write_project(project, {"vars": {"API_URL": "http://localhost:8000"}})

    assert main(config_args + ["start", "--dry-run"]) == 0

    assert not (project / ".env.local").exists()
    out = capsys.readouterr().out
    assert "Dry run mode" in out
    assert "API_URL=http://192.168.1.100:8000" in out


def test_start_without_project_config(workspace):
    _, config_args = workspace
    assert main(config_args + ["start"]) == 2


def test_start_without_network(workspace, fake_interfaces):
    project, config_args = workspace
    write_project(project, {"vars": {"API_URL": "http://localhost:8000"}})
    fake_interfaces({}, {})

    assert main(config_args + ["start"]) == 3
    assert not (project / ".env.local").exists()


def test_start_malformed_env_file(workspace, lan_interfaces):
    project, config_args = workspace
    write_project(project, {"vars": {"API_URL": "http://localhost:8000"}})
    (project / ".env.local").write_text("garbage line\n")

    assert main(config_args + ["start"]) == 1
    assert (project / ".env.local").read_text() == "garbage line\n"


# ==================== expose ====================

def test_expose(workspace, lan_interfaces, capsys):
    _, config_args = workspace

    assert main(config_args + ["expose", "http://localhost:3000", "--name", "web"]) == 0

    out = capsys.readouterr().out
    assert "http://192.168.1.100:3000" in out
    assert "web" in out


def test_expose_custom_port_and_https(workspace, lan_interfaces, capsys):
    _, config_args = workspace

    assert main(config_args + ["expose", "http://localhost:3000", "--port", "8443", "--https"]) == 0
    assert "https://192.168.1.100:8443" in capsys.readouterr().out


def test_expose_invalid_url(workspace, lan_interfaces):
    _, config_args = workspace
    assert main(config_args + ["expose", "http://example.com:3000"]) == 5


# ==================== doctor ====================

def test_doctor_all_passing(workspace, lan_interfaces, mocker, capsys):
    _, config_args = workspace
    mocker.patch("lanup.lanup_service.is_docker_available", return_value=True)
    mocker.patch("lanup.lanup_service.get_running_containers", return_value=[])
    mocker.patch("lanup.lanup_service.get_supabase_status", return_value={"api_url": 54321})

    assert main(config_args + ["doctor"]) == 0
    assert "All checks passed" in capsys.readouterr().out


def test_doctor_failing_check(workspace, fake_interfaces, mocker):
    _, config_args = workspace
    fake_interfaces({}, {})
    mocker.patch("lanup.lanup_service.is_docker_available", return_value=False)
    mocker.patch("lanup.lanup_service.get_supabase_status", return_value={"api_url": 54321})

    assert main(config_args + ["doctor"]) == 3


# ==================== logs ====================

@pytest.fixture
def log_file(workspace):
    project, _ = workspace
    path = project.parent / "logs" / "lanup.log"
    path.parent.mkdir()
    return path


def test_logs_without_file(workspace, log_file, capsys):
    _, config_args = workspace

    assert main(config_args + ["logs"]) == 0

    assert "No log file found" in capsys.readouterr().out
    assert not log_file.exists()


def test_logs_shows_whole_file(workspace, log_file, capsys):
    _, config_args = workspace
    log_file.write_text("first\nsecond\nthird\n")

    assert main(config_args + ["logs"]) == 0
    assert capsys.readouterr().out == "first\nsecond\nthird\n"


def test_logs_tail(workspace, log_file, capsys):
    """--tail prints only the last N non-empty lines."""
    _, config_args = workspace
    log_file.write_text("one\ntwo\n\nthree\nfour\n\n")

    assert main(config_args + ["logs", "-n", "2"]) == 0
    assert capsys.readouterr().out == "three\nfour\n"


def test_logs_negative_tail(workspace, log_file, capsys):
    _, config_args = workspace
    assert main(config_args + ["logs", "--tail", "-1"]) == 2


def test_logs_expands_home(workspace, tmp_path, monkeypatch, capsys):
    project, _ = workspace
    monkeypatch.setenv("HOME", str(tmp_path))
    (tmp_path / "lanup-home.log").write_text("from home\n")
    config = tmp_path / "home-config.yaml"
    config.write_text(yaml.safe_dump({"log_path": "~/lanup-home.log"}))

    assert main(["--config", str(config), "logs"]) == 0
    assert capsys.readouterr().out == "from home\n"


@pytest.mark.parametrize("answer", ["y", "YES"])
def test_logs_clear_confirmed(workspace, log_file, mocker, capsys, answer):
    """Confirming removes the log file and its rotated backups."""
    _, config_args = workspace
    log_file.write_text("entry\n")
    rotated = log_file.with_name("lanup.log.1")
    rotated.write_text("older entry\n")
    mocker.patch("builtins.input", return_value=answer)

    assert main(config_args + ["logs", "--clear"]) == 0

    assert not log_file.exists()
    assert not rotated.exists()
    assert "Log file cleared successfully" in capsys.readouterr().out


@pytest.mark.parametrize("answer", ["n", "", EOFError()])
def test_logs_clear_cancelled(workspace, log_file, mocker, capsys, answer):
    _, config_args = workspace
    log_file.write_text("entry\n")
    if isinstance(answer, Exception):
        mocker.patch("builtins.input", side_effect=answer)
    else:
        mocker.patch("builtins.input", return_value=answer)

    assert main(config_args + ["logs", "--clear"]) == 0

    assert log_file.read_text() == "entry\n"
    assert "Operation cancelled" in capsys.readouterr().out


def test_logs_clear_without_file(workspace, log_file, mocker, capsys):
    _, config_args = workspace
    prompt = mocker.patch("builtins.input")

    assert main(config_args + ["logs", "--clear"]) == 0

    prompt.assert_not_called()
    assert "No log file found." in capsys.readouterr().out


def test_logs_follow_streams_new_lines(workspace, log_file, mocker, capsys):
    """--follow prints only lines appended after it started and exits when the file goes away."""
    _, config_args = workspace
    log_file.write_text("already there\n")
    ticks = []

    def tick(seconds):
        ticks.append(seconds)
        if len(ticks) == 1:
            with open(log_file, "a") as handle:
                handle.write("new entry\n")
        else:
            log_file.unlink()

    mocker.patch("lanup.cli.time.sleep", side_effect=tick)

    assert main(config_args + ["logs", "--follow"]) == 0

    out = capsys.readouterr().out
    assert "already there" not in out
    assert "new entry" in out
    assert "Log file was removed or rotated. Exiting." in out


def test_logs_follow_waits_for_file(workspace, log_file, mocker, capsys):
    _, config_args = workspace

    def tick(seconds):
        if not log_file.exists():
            log_file.write_text("")
        else:
            raise KeyboardInterrupt

    mocker.patch("lanup.cli.time.sleep", side_effect=tick)

    assert main(config_args + ["logs", "-f"]) == 0
    out = capsys.readouterr().out
    assert "Waiting for log file to be created..." in out
    assert "Following log file (Ctrl+C to stop)..." in out


def test_logs_does_not_write_to_log(workspace, log_file, capsys):
    """Viewing logs never creates the log file."""
    _, config_args = workspace
    assert main(config_args + ["-v", "logs", "-n", "5"]) == 0
    assert not log_file.exists()
