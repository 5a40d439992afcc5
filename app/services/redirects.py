"""
Redirect URL templating for forms that redirect on submit.

Success URLs may carry ``@<fieldId>`` placeholders, replaced by the
URL-encoded submitted value. Failure URLs get an ``error=<kind>`` parameter.
"""

import re
from typing import Any
from urllib.parse import quote

from app.models.api import RejectionKind

# Characters encodeURIComponent leaves alone besides alphanumerics and -_.
_URI_COMPONENT_SAFE = "!~*'()"


def stringify_value(value: Any) -> str:
    """Render a payload value the way it reads in JSON (true/false, 30 not 30.0)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def encode_component(value: Any) -> str:
    return quote(stringify_value(value), safe=_URI_COMPONENT_SAFE)


def substitute_placeholders(template: str, payload: dict[str, Any]) -> str:
    """
    Replace every ``@<fieldId>`` in ``template`` with the encoded payload value.

    Matching is a single left-to-right pass that prefers the longest field
    id, so ``@name`` never eats the start of ``@name2``. Substituted values
    are not scanned again. Placeholders for fields absent from the payload
    stay as written.
    """
    if not payload:
        return template

    ids = sorted(payload.keys(), key=len, reverse=True)
    pattern = re.compile("@(" + "|".join(re.escape(i) for i in ids) + ")")
    return pattern.sub(lambda m: encode_component(payload[m.group(1)]), template)


def build_success_url(template: str, payload: dict[str, Any], default: str) -> str:
    return substitute_placeholders(template or default, payload)


def build_failure_url(template: str, kind: RejectionKind, default: str) -> str:
    base = template or default
    separator = "&" if "?" in base else "?"
    return f"{base}{separator}error={kind.value}"
