"""Jinja2 rendering for the files sshalert writes onto the host."""
from __future__ import annotations

import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    BaseLoader,
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
)


def msmtp_quote(value: object) -> str:
    """Return *value* as a double-quoted msmtp configuration string."""
    text = str(value)
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def shell_quote(value: object) -> str:
    """Return *value* quoted for safe use as a single shell word."""
    return shlex.quote(str(value))


@dataclass(slots=True)
class TemplateEngine:
    """Render built-in templates, optionally shadowed by an override directory."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Build an engine that prefers templates found under *override_dir*."""
        loaders: list[BaseLoader] = []
        if override_dir is not None and override_dir.expanduser().is_dir():
            loaders.append(FileSystemLoader(str(override_dir.expanduser())))
        loaders.append(PackageLoader("sshalert", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        environment.filters["msmtp_quote"] = msmtp_quote
        environment.filters["shell_quote"] = shell_quote
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        template = self.environment.get_template(template_name)
        return template.render(**dict(context))


__all__ = ["TemplateEngine", "msmtp_quote", "shell_quote"]
