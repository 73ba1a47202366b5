"""
Literal {{variable}} substitution for message templates
"""
import logging
import re
from typing import Any, Dict, Optional, Set


logger = logging.getLogger(__name__)


# Anything between double braces is a placeholder; unknown names render empty
PLACEHOLDER = re.compile(r"\{\{\s*([^{}]*?)\s*\}\}")


def _lookup(variables: Dict[str, Any], name: str) -> Any:
    """Plain keys first, then dotted paths into nested mappings (``trigger_payload.source``)"""
    if name in variables:
        return variables[name]

    value: Any = variables
    for part in name.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


class MessageRenderer:
    """Replaces ``{{name}}`` with values from the execution context snapshot"""

    def render(
        self,
        template: Optional[str],
        variables: Dict[str, Any],
        execution_id: str = None
    ) -> str:
        if not template:
            return ""

        missing: Set[str] = set()

        def substitute(match: re.Match) -> str:
            name = match.group(1)
            value = _lookup(variables, name) if name else None
            if value is None:
                missing.add(name)
                return ""
            return str(value)

        rendered = PLACEHOLDER.sub(substitute, template)

        if missing:
            logger.warning(
                f"Unresolved template variables replaced with empty string: {sorted(missing)}",
                extra={"execution_id": execution_id}
            )

        return rendered

    @staticmethod
    def variables_in(template: Optional[str]) -> Set[str]:
        return set(PLACEHOLDER.findall(template or ""))
