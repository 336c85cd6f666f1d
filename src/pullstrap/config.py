"""Configuration loader for pullstrap.

Configuration values are read from multiple sources, later sources winning:

1. Built-in defaults.
2. ``/etc/pullstrap/config.yml`` (or an override path).
3. Environment variables prefixed with ``PULLSTRAP_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export PULLSTRAP_ACCOUNT__NAME=deploy
    export PULLSTRAP_SSH__PROBE_TIMEOUT=30

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``; every managed path is derived from it so provisioners never
consult ambient globals.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load pullstrap configuration. Install with "
        "`pip install pullstrap` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "PULLSTRAP_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

ALLOWED_CONFIG_STRATEGIES = {"replace", "merge"}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class AccountConfig:
    """Service account the pull agent runs as."""

    name: str = "ansible"
    home: Path | None = None
    shell: str = "/bin/bash"

    @property
    def home_dir(self) -> Path:
        """Return the account home, defaulting to ``/home/<name>``."""
        if self.home is not None:
            return self.home
        return Path("/home") / self.name

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "home": str(self.home) if self.home is not None else None,
            "shell": self.shell,
        }


@dataclass(frozen=True)
class SudoersConfig:
    """Location of the password-free privilege grant."""

    dir: Path = Path("/etc/sudoers.d")
    visudo_bin: str = "visudo"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"dir": str(self.dir), "visudo_bin": self.visudo_bin}


@dataclass(frozen=True)
class SSHConfig:
    """SSH identity, client configuration and connectivity probe settings."""

    key_name: str = "id_ed25519"
    default_git_host: str = "gitlab.com"
    config_strategy: str = "replace"
    probe_user: str = "git"
    probe_timeout: float = 15.0
    greeting_patterns: tuple[str, ...] = ("Welcome", "Hi")
    ssh_bin: str = "ssh"
    sudo_bin: str = "sudo"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "key_name": self.key_name,
            "default_git_host": self.default_git_host,
            "config_strategy": self.config_strategy,
            "probe_user": self.probe_user,
            "probe_timeout": self.probe_timeout,
            "greeting_patterns": list(self.greeting_patterns),
            "ssh_bin": self.ssh_bin,
            "sudo_bin": self.sudo_bin,
        }


@dataclass(frozen=True)
class VaultConfig:
    """Vault password file location (derived from the account home when unset)."""

    password_file: Path | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "password_file": str(self.password_file) if self.password_file else None,
        }


@dataclass(frozen=True)
class FactsConfig:
    """Local facts directory consumed by the pull agent."""

    dir: Path = Path("/etc/ansible/facts.d")
    file_name: str = "custom.fact"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"dir": str(self.dir), "file_name": self.file_name}


@dataclass(frozen=True)
class PullConfig:
    """Defaults for the ``ansible-pull`` invocation."""

    binary: str = "/usr/bin/ansible-pull"
    default_branch: str = "main"
    default_playbook: str = "local.yml"
    inventory: str = "localhost,"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "binary": self.binary,
            "default_branch": self.default_branch,
            "default_playbook": self.default_playbook,
            "inventory": self.inventory,
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    unit_name: str = "ansible-pull"
    systemctl_bin: str = "systemctl"
    boot_delay: str = "5min"
    interval: str = "10min"
    randomized_delay: str = "60"
    timeout_stop_sec: int = 600

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit_dir": str(self.unit_dir),
            "unit_name": self.unit_name,
            "systemctl_bin": self.systemctl_bin,
            "boot_delay": self.boot_delay,
            "interval": self.interval,
            "randomized_delay": self.randomized_delay,
            "timeout_stop_sec": self.timeout_stop_sec,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for pullstrap."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path
    account: AccountConfig
    sudoers: SudoersConfig
    ssh: SSHConfig
    vault: VaultConfig
    facts: FactsConfig
    pull: PullConfig
    systemd: SystemdConfig

    # Derived paths ------------------------------------------------------
    @property
    def ssh_dir(self) -> Path:
        """Return the account's ``.ssh`` directory."""
        return self.account.home_dir / ".ssh"

    @property
    def private_key(self) -> Path:
        """Return the path of the account's private key."""
        return self.ssh_dir / self.ssh.key_name

    @property
    def public_key(self) -> Path:
        """Return the path of the account's public key."""
        return self.ssh_dir / f"{self.ssh.key_name}.pub"

    @property
    def ssh_config_file(self) -> Path:
        """Return the account's SSH client configuration file."""
        return self.ssh_dir / "config"

    @property
    def vault_password_file(self) -> Path:
        """Return the vault password file location."""
        if self.vault.password_file is not None:
            return self.vault.password_file
        return self.account.home_dir / ".ansible" / ".vault_pass"

    @property
    def sudoers_file(self) -> Path:
        """Return the account's privilege grant file."""
        return self.sudoers.dir / self.account.name

    @property
    def facts_file(self) -> Path:
        """Return the custom facts document path."""
        return self.facts.dir / self.facts.file_name

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "account": self.account.to_dict(),
            "sudoers": self.sudoers.to_dict(),
            "ssh": self.ssh.to_dict(),
            "vault": self.vault.to_dict(),
            "facts": self.facts.to_dict(),
            "pull": self.pull.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/pullstrap/config.yml",
    "logs_dir": "/var/log/pullstrap",
    "templates_dir": "/etc/pullstrap/templates",
    "account": {
        "name": "ansible",
        "home": None,  # derived from the account name when absent
        "shell": "/bin/bash",
    },
    "sudoers": {
        "dir": "/etc/sudoers.d",
        "visudo_bin": "visudo",
    },
    "ssh": {
        "key_name": "id_ed25519",
        "default_git_host": "gitlab.com",
        "config_strategy": "replace",
        "probe_user": "git",
        "probe_timeout": 15.0,
        "greeting_patterns": ["Welcome", "Hi"],
        "ssh_bin": "ssh",
        "sudo_bin": "sudo",
    },
    "vault": {
        "password_file": None,
    },
    "facts": {
        "dir": "/etc/ansible/facts.d",
        "file_name": "custom.fact",
    },
    "pull": {
        "binary": "/usr/bin/ansible-pull",
        "default_branch": "main",
        "default_playbook": "local.yml",
        "inventory": "localhost,",
    },
    "systemd": {
        "unit_dir": "/etc/systemd/system",
        "unit_name": "ansible-pull",
        "systemctl_bin": "systemctl",
        "boot_delay": "5min",
        "interval": "10min",
        "randomized_delay": "60",
        "timeout_stop_sec": 600,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS: dict[str, set[str]] = {
    key: set(cast(Mapping[str, object], value).keys())
    for key, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (yaml.YAMLError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown keys for {section}: {joined}.")

    account = _as_dict(raw.get("account"), "account")
    name = account.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError("account.name must be a non-empty string.")
    if "/" in name or name.startswith("-"):
        raise ConfigError(f"account.name {name!r} is not a valid user name.")

    ssh = _as_dict(raw.get("ssh"), "ssh")
    strategy = ssh.get("config_strategy")
    if strategy not in ALLOWED_CONFIG_STRATEGIES:
        allowed_text = ", ".join(sorted(ALLOWED_CONFIG_STRATEGIES))
        raise ConfigError(
            f"ssh.config_strategy must be one of: {allowed_text}. Got {strategy!r}."
        )
    _expect_positive_float(ssh.get("probe_timeout"), "ssh.probe_timeout", default=15.0)
    patterns = _as_sequence(ssh.get("greeting_patterns", []), "ssh.greeting_patterns")
    if not patterns:
        raise ConfigError("ssh.greeting_patterns must list at least one pattern.")

    systemd = _as_dict(raw.get("systemd"), "systemd")
    _expect_int(systemd.get("timeout_stop_sec"), "systemd.timeout_stop_sec", default=600)


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    account_raw = _as_dict(raw.get("account"), "account")
    home_raw = account_raw.get("home")
    account = AccountConfig(
        name=_expect_str(account_raw.get("name"), "account.name").strip(),
        home=_to_path(home_raw) if home_raw not in (None, "") else None,
        shell=_expect_str(account_raw.get("shell"), "account.shell"),
    )

    sudoers_raw = _as_dict(raw.get("sudoers"), "sudoers")
    sudoers = SudoersConfig(
        dir=_to_path(sudoers_raw.get("dir")),
        visudo_bin=_expect_str(sudoers_raw.get("visudo_bin"), "sudoers.visudo_bin"),
    )

    ssh_raw = _as_dict(raw.get("ssh"), "ssh")
    raw_patterns = _as_sequence(ssh_raw.get("greeting_patterns", []), "ssh.greeting_patterns")
    patterns = tuple(str(item) for item in raw_patterns)
    ssh = SSHConfig(
        key_name=_expect_str(ssh_raw.get("key_name"), "ssh.key_name"),
        default_git_host=_expect_str(ssh_raw.get("default_git_host"), "ssh.default_git_host"),
        config_strategy=_expect_str(ssh_raw.get("config_strategy"), "ssh.config_strategy"),
        probe_user=_expect_str(ssh_raw.get("probe_user"), "ssh.probe_user"),
        probe_timeout=_expect_positive_float(
            ssh_raw.get("probe_timeout"), "ssh.probe_timeout", default=15.0
        ),
        greeting_patterns=patterns,
        ssh_bin=_expect_str(ssh_raw.get("ssh_bin"), "ssh.ssh_bin"),
        sudo_bin=_expect_str(ssh_raw.get("sudo_bin"), "ssh.sudo_bin"),
    )

    vault_raw = _as_dict(raw.get("vault"), "vault")
    password_file_raw = vault_raw.get("password_file")
    vault = VaultConfig(
        password_file=(
            _to_path(password_file_raw) if password_file_raw not in (None, "") else None
        ),
    )

    facts_raw = _as_dict(raw.get("facts"), "facts")
    facts = FactsConfig(
        dir=_to_path(facts_raw.get("dir")),
        file_name=_expect_str(facts_raw.get("file_name"), "facts.file_name"),
    )

    pull_raw = _as_dict(raw.get("pull"), "pull")
    pull = PullConfig(
        binary=_expect_str(pull_raw.get("binary"), "pull.binary"),
        default_branch=_expect_str(pull_raw.get("default_branch"), "pull.default_branch"),
        default_playbook=_expect_str(pull_raw.get("default_playbook"), "pull.default_playbook"),
        inventory=_expect_str(pull_raw.get("inventory"), "pull.inventory"),
    )

    systemd_raw = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        unit_dir=_to_path(systemd_raw.get("unit_dir")),
        unit_name=_expect_str(systemd_raw.get("unit_name"), "systemd.unit_name"),
        systemctl_bin=_expect_str(systemd_raw.get("systemctl_bin"), "systemd.systemctl_bin"),
        boot_delay=str(systemd_raw.get("boot_delay")),
        interval=str(systemd_raw.get("interval")),
        randomized_delay=str(systemd_raw.get("randomized_delay")),
        timeout_stop_sec=_expect_int(
            systemd_raw.get("timeout_stop_sec"), "systemd.timeout_stop_sec", default=600
        ),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        account=account,
        sudoers=sudoers,
        ssh=ssh,
        vault=vault,
        facts=facts,
        pull=pull,
        systemd=systemd,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AccountConfig",
    "AppConfig",
    "ConfigError",
    "FactsConfig",
    "PullConfig",
    "SSHConfig",
    "SudoersConfig",
    "SystemdConfig",
    "VaultConfig",
    "load_config",
]
