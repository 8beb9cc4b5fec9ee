"""
Utilities for compose-style variable interpolation.
"""
import re
from typing import Any, List, Mapping, Tuple

# $$ | ${VAR} ${VAR:-x} ${VAR-x} ${VAR:+x} ${VAR+x} ${VAR:?x} ${VAR?x} | $VAR
_PATTERN = re.compile(
    r'\$(?:(?P<escaped>\$)'
    r'|\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<modifier>:?[-+?])(?P<arg>[^}]*))?\}'
    r'|(?P<named>[A-Za-z_][A-Za-z0-9_]*))'
)


class EnvironmentInterpolator:
    """
    Interpolates environment variables the way compose does.
    Supports $VAR, ${VAR}, ${VAR:-default}, ${VAR:+value}, ${VAR:?error}
    (and their colon-less forms) and the $$ escape.
    """
    def __init__(self, context: Mapping[str, str]):
        """
        :param context: The environment variables used for substitution.
        """
        self.context = context
        self.missing: List[str] = []

    def interpolate(self, template: str) -> str:
        """
        Interpolates a single string.

        Unset variables without a modifier resolve to the empty string and are
        recorded in ``missing``.

        :param template: The string containing placeholders.
        :return: The interpolated string.
        :raises KeyError: If a ${VAR:?error} variable is unset.
        """
        return _PATTERN.sub(self._replace, template)

    def interpolate_tree(self, data: Any) -> Any:
        """
        Interpolates every string value in a loaded YAML tree.
        Mapping keys are left untouched.
        """
        if isinstance(data, str):
            return self.interpolate(data)
        if isinstance(data, dict):
            return {key: self.interpolate_tree(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self.interpolate_tree(item) for item in data]
        return data

    def _replace(self, match: 're.Match') -> str:
        if match.group('escaped'):
            return '$'

        name = match.group('braced') or match.group('named')
        modifier = match.group('modifier')
        arg = match.group('arg') or ''
        value = self.context.get(name)

        # With a colon, an empty value counts as unset
        unset = value is None or (modifier is not None and modifier.startswith(':') and value == '')

        if modifier in (':-', '-'):
            return arg if unset else value
        if modifier in (':+', '+'):
            return '' if unset else arg
        if modifier in (':?', '?'):
            if unset:
                raise KeyError(arg or f"Variable {name} is required")
            return value

        if value is None:
            if name not in self.missing:
                self.missing.append(name)
            return ''
        return value


def interpolate(data: Any, context: Mapping[str, str]) -> Tuple[Any, List[str]]:
    """
    Interpolates a loaded YAML tree.

    :param data: The tree to interpolate.
    :param context: The environment variables context.
    :return: The interpolated tree and the names of unset variables.
    """
    interpolator = EnvironmentInterpolator(context)
    return interpolator.interpolate_tree(data), interpolator.missing

