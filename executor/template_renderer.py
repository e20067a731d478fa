import json
import re
from functools import lru_cache
from typing import Any, List, Mapping
import logging

from utils.dotpath import MISSING, resolve_path

logger = logging.getLogger("workflow_engine")

TOKEN_PATTERN = re.compile(r"\{\{\s*(.+?)\s*\}\}")


@lru_cache(maxsize=1024)
def _placeholders(template_str: str) -> tuple:
    return tuple(TOKEN_PATTERN.findall(template_str))


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


class TemplateRenderer:
    """
    Substitutes `{{ path.to.value }}` tokens against a context mapping.

    Tokens that do not resolve (or resolve to None) are left exactly as
    written, so a partially populated context never breaks a run.
    """

    def find_placeholders(self, template_str: str) -> List[str]:
        """Returns the dot paths referenced by a template, in order."""
        return list(_placeholders(template_str))

    def validate(self, template_str: str, context: Mapping[str, Any]) -> List[str]:
        """
        Returns the placeholders that the context cannot resolve.
        """
        if not isinstance(template_str, str):
            return []
        missing = []
        for path in self.find_placeholders(template_str):
            value = resolve_path(context, path)
            if value is MISSING or value is None:
                missing.append(path)
        return missing

    def render(self, template_str: str, context: Mapping[str, Any]) -> str:
        """Renders a string template with the provided context."""
        if not template_str:
            return "" if template_str is None else template_str
        if "{{" not in template_str:
            return template_str

        def _replace(match: re.Match) -> str:
            value = resolve_path(context, match.group(1))
            if value is MISSING or value is None:
                return match.group(0)
            return _stringify(value)

        return TOKEN_PATTERN.sub(_replace, template_str)

    def render_value(self, value: Any, context: Mapping[str, Any]) -> Any:
        """Renders every string leaf of a nested dict/list structure."""
        if isinstance(value, str):
            return self.render(value, context)
        if isinstance(value, dict):
            return {key: self.render_value(item, context) for key, item in value.items()}
        if isinstance(value, list):
            return [self.render_value(item, context) for item in value]
        if isinstance(value, tuple):
            return tuple(self.render_value(item, context) for item in value)
        return value

    def missing_in_value(self, value: Any, context: Mapping[str, Any]) -> List[str]:
        """Unresolved placeholders anywhere inside a nested structure."""
        if isinstance(value, str):
            return self.validate(value, context)
        if isinstance(value, dict):
            value = list(value.values())
        if isinstance(value, (list, tuple)):
            missing = []
            for item in value:
                missing.extend(self.missing_in_value(item, context))
            return missing
        return []


def render(template_str: str, context: Mapping[str, Any]) -> str:
    return TemplateRenderer().render(template_str, context)


def render_value(value: Any, context: Mapping[str, Any]) -> Any:
    return TemplateRenderer().render_value(value, context)
