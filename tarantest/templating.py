"""
Jinja2 environment for the Lua and HTML templates shipped with the package.
"""

import os
from typing import Any

import jinja2


def create_jinja_env(html: bool = False) -> jinja2.Environment:
    """
    Environment loading from tarantest/templates.

    Lua templates are rendered verbatim; HTML reports escape every value.
    """
    return jinja2.Environment(
        loader=jinja2.PackageLoader("tarantest", "templates"),
        autoescape=html,
        undefined=jinja2.StrictUndefined,
        keep_trailing_newline=True,
    )


def render(template_name: str, html: bool = False, **context: Any) -> str:
    return create_jinja_env(html).get_template(template_name).render(**context)


def write_report(path: str, template_name: str, **context: Any) -> str:
    """Render an HTML report to path, creating parent directories."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(render(template_name, html=True, **context))
    return path
