"""Jinja2 template rendering for generated configuration files.

Built-in templates ship inside the package under ``builtin/``. An optional
override directory shadows them file-by-file so operators can customise the
generated nginx site without patching devsitectl.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
)

BUILTIN_TEMPLATES = Path(__file__).resolve().parent / "builtin"


class TemplateRenderError(RuntimeError):
    """Raised when a template cannot be loaded or rendered."""


@dataclass(slots=True)
class TemplateEngine:
    """Render named templates with strict undefined-variable handling."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates from *override_dir*."""
        loaders: list[FileSystemLoader] = []
        if override_dir is not None:
            candidate = override_dir.expanduser()
            if candidate.is_dir():
                loaders.append(FileSystemLoader(str(candidate)))
        loaders.append(FileSystemLoader(str(BUILTIN_TEMPLATES)))
        environment = Environment(  # noqa: S701 - renders config files, not HTML
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render {template_name}: {exc}") from exc


__all__ = ["BUILTIN_TEMPLATES", "TemplateEngine", "TemplateRenderError"]
