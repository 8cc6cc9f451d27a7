import re
from typing import Mapping

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def interpolate(text: str, bindings: Mapping[str, str]) -> str:
    """
    Replace {{name}} placeholders with captured bindings.
    Unknown placeholders are left verbatim.
    """
    if not text:
        return text

    def _replace(match: re.Match) -> str:
        value = bindings.get(match.group(1))
        if value is None or value == "":
            return match.group(0)
        return str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, text)
