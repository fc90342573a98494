"""
mail/renderer.py -- Jinja2 rendering of localized email templates.

Every email template `name` consists of two files:
  <name>.html         -- HTML body
  <name>.subject.txt  -- subject line (surrounding whitespace stripped)

Localized variants sit next to them and win when they match the user's
locale, most specific first:
  registration.de_DE.html -> registration.de.html -> registration.html

Templates ship in mail/templates/. MAIL_TEMPLATES_DIR points to a directory
that is searched first, so deployments can override wording without patching
the package.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

_PACKAGED_TEMPLATES = Path(__file__).parent / "templates"


def locale_candidates(locale: str) -> list[str]:
    """Return ["de_DE", "de"] for "de_DE", ["de"] for "de"."""
    candidates = [locale] if locale else []
    language = locale.split("_", 1)[0] if locale else ""
    if language and language != locale:
        candidates.append(language)
    return candidates


class EmailRenderer:
    def __init__(self, override_dir: str | Path | None = None) -> None:
        search_path = [str(_PACKAGED_TEMPLATES)]
        if override_dir:
            search_path.insert(0, str(override_dir))
        self.env = Environment(
            loader=FileSystemLoader(search_path),
            autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
            undefined=StrictUndefined,
        )

    def render(self, name: str, locale: str, variables: dict[str, Any]) -> tuple[str, str]:
        """Render (subject, html_body) for template `name` in `locale`.

        Raises jinja2.TemplateNotFound when not even the unlocalized files exist.
        """
        variants = locale_candidates(locale)
        body = self.env.select_template([f"{name}.{v}.html" for v in variants] + [f"{name}.html"])
        subject = self.env.select_template([f"{name}.{v}.subject.txt" for v in variants] + [f"{name}.subject.txt"])
        return subject.render(**variables).strip(), body.render(**variables)
