"""SSH identity, client configuration and connectivity helpers."""
from __future__ import annotations

import re
import subprocess
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

ProbeRunner = Callable[[list[str], float], subprocess.CompletedProcess[str]]

_HOST_LINE = re.compile(r"^\s*Host\s+(?P<patterns>.+?)\s*$", re.IGNORECASE)
_MATCH_LINE = re.compile(r"^\s*Match\s", re.IGNORECASE)


class SSHKeyError(RuntimeError):
    """Raised when key material cannot be generated or parsed."""


@dataclass(frozen=True, slots=True)
class KeyMaterial:
    """OpenSSH-encoded key pair."""

    private: bytes
    public: bytes


@dataclass(frozen=True, slots=True)
class HostStanza:
    """A ``Host`` block (or the preamble before the first one) of a config file."""

    patterns: tuple[str, ...]
    text: str

    @property
    def is_preamble(self) -> bool:
        """Return ``True`` for lines that precede the first ``Host``."""
        return not self.patterns


@dataclass(frozen=True, slots=True)
class ProbeOutcome:
    """Result of a non-interactive authentication attempt."""

    host: str
    success: bool
    output: str = ""
    timed_out: bool = False
    error: str | None = None


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


def generate_ed25519(comment: str) -> KeyMaterial:
    """Return a fresh passphrase-less Ed25519 key pair."""
    key = Ed25519PrivateKey.generate()
    private = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.OpenSSH,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return KeyMaterial(private=private, public=_public_line(key, comment))


def public_from_private(private: bytes, comment: str) -> bytes:
    """Re-derive the public key line from OpenSSH private key bytes."""
    key = _load_private(private)
    return _public_line(key, comment)


def public_key_matches(private: bytes, public: bytes) -> bool:
    """Return ``True`` when *public* belongs to *private* (comments ignored)."""
    try:
        derived = public_from_private(private, "").split()
    except SSHKeyError:
        return False
    offered = public.split()
    return len(offered) >= 2 and offered[:2] == derived[:2]


def _load_private(private: bytes) -> Ed25519PrivateKey:
    try:
        key = serialization.load_ssh_private_key(private, password=None)
    except (ValueError, TypeError) as exc:
        raise SSHKeyError(f"Unreadable private key: {exc}") from exc
    if not isinstance(key, Ed25519PrivateKey):
        raise SSHKeyError(f"Expected an Ed25519 key, found {type(key).__name__}.")
    return key


def _public_line(key: Ed25519PrivateKey, comment: str) -> bytes:
    public = key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    )
    if comment:
        public = public + b" " + comment.encode("utf-8")
    return public + b"\n"


# ---------------------------------------------------------------------------
# Client configuration
# ---------------------------------------------------------------------------


def parse_host_stanzas(text: str) -> list[HostStanza]:
    """Split an ssh client config into its preamble and ``Host`` blocks.

    ``Match`` blocks are kept verbatim as their own stanza with no patterns
    attached so they are never mistaken for a host.
    """
    stanzas: list[HostStanza] = []
    current_patterns: tuple[str, ...] = ()
    current_lines: list[str] = []

    def flush() -> None:
        body = "\n".join(current_lines).strip("\n")
        if body or current_patterns:
            stanzas.append(HostStanza(patterns=current_patterns, text=body))

    for line in text.splitlines():
        host_match = _HOST_LINE.match(line)
        if host_match or _MATCH_LINE.match(line):
            flush()
            current_patterns = tuple(host_match.group("patterns").split()) if host_match else ()
            current_lines = [line]
            continue
        current_lines.append(line)
    flush()
    return stanzas


def configured_hosts(text: str) -> list[str]:
    """Return every host pattern that is not a wildcard, in file order."""
    hosts: list[str] = []
    for stanza in parse_host_stanzas(text):
        for pattern in stanza.patterns:
            if pattern.startswith("*") or pattern.startswith("!"):
                continue
            hosts.append(pattern)
    return hosts


def first_configured_host(text: str) -> str | None:
    """Return the first concrete host of the config, if any."""
    hosts = configured_hosts(text)
    return hosts[0] if hosts else None


def join_stanzas(stanzas: Iterable[str]) -> str:
    """Join stanza texts with one blank line between them."""
    parts = [stanza.strip("\n") for stanza in stanzas if stanza.strip()]
    return "\n\n".join(parts) + "\n" if parts else ""


def merge_host_stanza(existing: str, host: str, stanza: str) -> str:
    """Replace the stanza owning *host* or append *stanza*, keeping the rest."""
    blocks: list[str] = []
    replaced = False
    for parsed in parse_host_stanzas(existing):
        if parsed.patterns == (host,):
            if not replaced:
                blocks.append(stanza)
                replaced = True
            continue
        blocks.append(parsed.text)
    if not replaced:
        blocks.append(stanza)
    return join_stanzas(blocks)


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


def build_probe_command(
    *,
    account: str,
    host: str,
    probe_user: str,
    timeout: float,
    ssh_bin: str = "ssh",
    sudo_bin: str = "sudo",
) -> list[str]:
    """Return the argv that attempts a batch-mode handshake as *account*."""
    return [
        sudo_bin,
        "-u",
        account,
        ssh_bin,
        "-o",
        "BatchMode=yes",
        "-o",
        "StrictHostKeyChecking=accept-new",
        "-o",
        f"ConnectTimeout={max(1, int(timeout))}",
        "-T",
        f"{probe_user}@{host}",
    ]


def probe_connectivity(
    command: list[str],
    *,
    host: str,
    timeout: float,
    greeting_patterns: Sequence[str],
    runner: ProbeRunner | None = None,
) -> ProbeOutcome:
    """Run *command* and classify the handshake by its greeting text.

    Git hosting providers reject shell access with a non-zero exit code even
    after authenticating, so only the output is considered.
    """
    run = runner or _default_probe_runner
    try:
        result = run(command, timeout)
    except subprocess.TimeoutExpired:
        return ProbeOutcome(host=host, success=False, timed_out=True)
    except FileNotFoundError as exc:
        return ProbeOutcome(host=host, success=False, error=f"{command[0]} not found: {exc}")
    output = f"{result.stdout or ''}{result.stderr or ''}"
    pattern = re.compile("|".join(re.escape(item) for item in greeting_patterns))
    return ProbeOutcome(host=host, success=bool(pattern.search(output)), output=output.strip())


def _default_probe_runner(command: list[str], timeout: float) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603
        command,
        capture_output=True,
        text=True,
        check=False,
        timeout=timeout,
        stdin=subprocess.DEVNULL,
    )


__all__ = [
    "HostStanza",
    "KeyMaterial",
    "ProbeOutcome",
    "ProbeRunner",
    "SSHKeyError",
    "build_probe_command",
    "configured_hosts",
    "first_configured_host",
    "generate_ed25519",
    "join_stanzas",
    "merge_host_stanza",
    "parse_host_stanzas",
    "probe_connectivity",
    "public_from_private",
    "public_key_matches",
]
