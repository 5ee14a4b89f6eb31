"""
Run Variables

Per-run string scratch space with ``{name}`` template substitution.
"""

import re
from typing import Dict, Iterator, Mapping, Optional

PLACEHOLDER_PATTERN = re.compile(r"\{([^\W\d][\w.]*)\}")


class VariableStore:
    """
    Variables scoped to a single run.

    All values are strings. Reading an unset name yields ``""``; template
    substitution leaves unknown placeholders as literal text so authors can
    spot typos in delivered messages.
    """

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = {}
        for name, value in (values or {}).items():
            self.set(name, value)

    def get(self, name: str) -> str:
        """Get a variable value, empty if unset."""
        return self._values.get(name, "")

    def lookup(self, name: str) -> Optional[str]:
        """Get a variable value, None if unset."""
        return self._values.get(name)

    def set(self, name: str, value: str) -> None:
        """Set a variable value."""
        if not isinstance(value, str):
            raise TypeError(f"Variable '{name}' must be a string, got {type(value).__name__}")
        self._values[name] = value

    def has(self, name: str) -> bool:
        return name in self._values

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def snapshot(self) -> Dict[str, str]:
        """Copy of all variables."""
        return dict(self._values)

    def resolve_template(
        self,
        text: str,
        fallback: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        Replace ``{name}`` placeholders.

        Variables win over ``fallback`` (typically event fields). Placeholders
        that resolve to nothing are kept verbatim.
        """
        if not text:
            return text

        def replacer(match: "re.Match[str]") -> str:
            name = match.group(1)
            if name in self._values:
                return self._values[name]
            if fallback is not None and name in fallback:
                return str(fallback[name])
            return match.group(0)

        return PLACEHOLDER_PATTERN.sub(replacer, text)

    def unresolved(self, text: str, fallback: Optional[Mapping[str, str]] = None) -> list:
        """Placeholder names in ``text`` with no value."""
        return [
            name for name in PLACEHOLDER_PATTERN.findall(text or "")
            if name not in self._values and not (fallback and name in fallback)
        ]
