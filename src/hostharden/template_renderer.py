# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


class TemplateRenderer:
    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=False,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )

    def render(self, template_name: str, context: dict) -> str:
        tmpl = self.env.get_template(template_name)
        return tmpl.render(**context)

    def read(self, name: str) -> str:
        """Return a packaged static file verbatim."""
        source, _, _ = self.env.loader.get_source(self.env, name)
        return source
