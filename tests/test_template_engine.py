"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest
from jinja2 import UndefinedError

from pullstrap.templates import TemplateEngine, write_atomic

SERVICE_CONTEXT = {
    "service_user": "ansible",
    "exec_start": [
        "/usr/bin/ansible-pull",
        "-U",
        "git@example.com:org/infra.git",
        "-C",
        "main",
        "-i",
        "localhost,",
        "local.yml",
    ],
    "timeout_stop_sec": 600,
}


def test_render_service_uses_builtin_template() -> None:
    """The packaged service unit renders the joined command line."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("systemd/service.j2", SERVICE_CONTEXT)

    assert "User=ansible\n" in output
    assert (
        "ExecStart=/usr/bin/ansible-pull -U git@example.com:org/infra.git -C main "
        "-i localhost, local.yml\n"
    ) in output
    assert "TimeoutStopSec=600\n" in output
    assert "WantedBy=multi-user.target" in output


def test_render_timer_uses_builtin_template() -> None:
    """The packaged timer unit carries the schedule."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(
        "systemd/timer.j2",
        {
            "service_name": "ansible-pull.service",
            "boot_delay": "5min",
            "interval": "10min",
            "randomized_delay": "60",
        },
    )

    assert "OnBootSec=5min\n" in output
    assert "OnUnitActiveSec=10min\n" in output
    assert "RandomizedDelaySec=60\n" in output
    assert "Unit=ansible-pull.service\n" in output
    assert "WantedBy=timers.target" in output


def test_missing_variable_is_an_error() -> None:
    """Strict undefined handling rejects incomplete contexts."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(UndefinedError):
        engine.render_to_string("sudoers/grant.j2", {})


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "units" / "ansible-pull.service"

    changed = engine.render_to_path(
        "systemd/service.j2", destination, SERVICE_CONTEXT, mode=0o644
    )

    assert changed is True
    assert oct(destination.stat().st_mode & 0o777) == "0o644"
    assert engine.render_to_path(
        "systemd/service.j2", destination, SERVICE_CONTEXT, mode=0o644
    ) is False


def test_write_atomic_corrects_mode_of_identical_content(tmp_path: Path) -> None:
    """Identical content with a wrong mode is only chmod-ed."""
    destination = tmp_path / "grant"
    destination.write_text("ansible ALL=(ALL) NOPASSWD: ALL\n", encoding="utf-8")
    destination.chmod(0o644)
    inode = destination.stat().st_ino

    changed = write_atomic(destination, "ansible ALL=(ALL) NOPASSWD: ALL\n", mode=0o440)

    assert changed is True
    assert destination.stat().st_mode & 0o777 == 0o440
    assert destination.stat().st_ino == inode


def test_write_atomic_leaves_no_temporary_files(tmp_path: Path) -> None:
    """The temporary file is renamed over the destination."""
    destination = tmp_path / "custom.fact"

    write_atomic(destination, '{"role": "db"}\n', mode=0o644)
    write_atomic(destination, '{"role": "web"}\n', mode=0o644)

    assert sorted(path.name for path in tmp_path.iterdir()) == ["custom.fact"]
    assert destination.read_text(encoding="utf-8") == '{"role": "web"}\n'


def test_write_atomic_replaces_undecodable_file(tmp_path: Path) -> None:
    """A file holding bytes that are not UTF-8 is overwritten, not an error."""
    destination = tmp_path / "config"
    destination.write_bytes(b"# caf\xe9 note\nHost old.example.com\n")
    destination.chmod(0o600)

    changed = write_atomic(destination, "Host example.com\n", mode=0o600)

    assert changed is True
    assert destination.read_text(encoding="utf-8") == "Host example.com\n"
    assert write_atomic(destination, "Host example.com\n", mode=0o600) is False


def test_override_path_takes_precedence(tmp_path: Path) -> None:
    """Override templates shadow the built-in ones."""
    override_dir = tmp_path / "templates"
    override_template = override_dir / "sudoers" / "grant.j2"
    override_template.parent.mkdir(parents=True)
    override_template.write_text("{{ account }} ALL=(root) NOPASSWD: ALL\n", encoding="utf-8")

    engine = TemplateEngine.with_overrides(override_dir)

    assert engine.render_to_string("sudoers/grant.j2", {"account": "deploy"}) == (
        "deploy ALL=(root) NOPASSWD: ALL\n"
    )
    assert "OnBootSec=" in engine.render_to_string(
        "systemd/timer.j2",
        {
            "service_name": "x.service",
            "boot_delay": "1min",
            "interval": "2min",
            "randomized_delay": "0",
        },
    )
