"""Jinja2 template rendering for generated host files.

Built-in templates ship inside the package (``pullstrap/resources``). An
override directory, when present, shadows them file by file so operators can
customise unit files without patching the package.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
)


@dataclass(slots=True)
class TemplateEngine:
    """Render templates with strict variables and write them atomically."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates from *override_dir*."""
        loaders = []
        if override_dir is not None and override_dir.is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("pullstrap", "resources"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,  # noqa: S701 - renders config files, not HTML
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context*."""
        template = self.environment.get_template(template_name)
        return template.render(**context)

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render into *destination*; return ``True`` when content or mode changed."""
        rendered = self.render_to_string(template_name, context)
        return write_atomic(destination, rendered, mode=mode)


def write_atomic(destination: Path, content: str, *, mode: int) -> bool:
    """Write *content* to *destination* via a temp file; skip identical content.

    Returns ``True`` when the file was (re)written or its mode was corrected.
    """
    try:
        existing = destination.read_bytes()
    except FileNotFoundError:
        existing = None

    if existing == content.encode("utf-8"):
        current_mode = destination.stat().st_mode & 0o777
        if current_mode == mode:
            return False
        destination.chmod(mode)
        return True

    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(destination.parent), prefix=f".{destination.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, destination)
    finally:
        tmp_path.unlink(missing_ok=True)
    return True


__all__ = ["TemplateEngine", "write_atomic"]
