"""
Utilities for interpolating environment variables into manifest text.
"""
import re
from typing import Dict


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings.
    Supports ${VAR}, ${VAR:-default}, ${VAR:+value}, ${VAR:?message} and $$ as a literal $.
    """
    # Group 1: literal $$
    # Group 2: VAR name
    # Group 3: -, + or ?
    # Group 4: default, value or message
    PATTERN = re.compile(r'(\$\$)|\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([-+?])([^}]*))?\}')

    @classmethod
    def interpolate(cls, template: str, context: Dict[str, str]) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        :param template: The string containing ${VAR} placeholders.
        :param context: The environment variables context.
        :return: The interpolated string.
        :raises KeyError: If a variable is unset and no default is provided,
            or if a ${VAR:?message} variable is unset or empty.
        """
        def replace(match):
            if match.group(1):
                return '$'

            var_name = match.group(2)
            modifier = match.group(3)
            alt_value = match.group(4)
            value = context.get(var_name)

            if modifier == '-':
                return value if value else alt_value
            if modifier == '+':
                return alt_value if value else ''
            if modifier == '?':
                if not value:
                    raise KeyError(alt_value or f"Variable {var_name} is required")
                return value
            if value is None:
                raise KeyError(f"Variable {var_name} not found in context")
            return value

        return cls.PATTERN.sub(replace, template)
