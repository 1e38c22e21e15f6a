"""Template rendering utilities."""

import logging
from typing import Any, Dict

from jinja2 import Environment, StrictUndefined, TemplateError


logger = logging.getLogger(__name__)

_environment = Environment(undefined=StrictUndefined, keep_trailing_newline=True)


def render_template(template_str: str, **context: Any) -> str:
    """Render a Jinja2 template string with given context."""
    if "{{" not in template_str and "{%" not in template_str:
        return template_str
    try:
        return _environment.from_string(template_str).render(**context)
    except TemplateError as e:
        logger.debug(f"Template rendering error in {template_str!r}: {e}")
        raise


def render_values(value: Any, context: Dict[str, Any]) -> Any:
    """Render every string inside a nested structure of dicts and lists."""
    if isinstance(value, str):
        return render_template(value, **context)
    if isinstance(value, dict):
        return {key: render_values(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [render_values(item, context) for item in value]
    return value


def merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_dicts(result[key], value)
        else:
            result[key] = value

    return result
