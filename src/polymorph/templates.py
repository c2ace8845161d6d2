"""Expansion of `{{.key}}` placeholders in template strings."""

import re
from typing import Mapping

from polymorph.exceptions import TemplateResolutionError, TemplateSyntaxError

ACTION_OPEN = "{{"
ACTION_CLOSE = "}}"

_ACTION_RX = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_FIELD_RX = re.compile(r"\s*\.([A-Za-z_][A-Za-z0-9_]*)\s*")


def _check_text(pattern: str, text: str) -> None:
    if ACTION_OPEN in text:
        raise TemplateSyntaxError(
            "unclosed action in template",
            pattern=pattern,
        )


def expand_template(pattern: str, params: Mapping[str, str]) -> str:
    """
    Replace ``{{.key}}`` actions in *pattern* with values from *params*.

    Text outside actions is copied unchanged. Every action must name a key present
    in *params*; an unknown key is an error, never an empty string.

    Raises:
        TemplateSyntaxError: The pattern has an unclosed ``{{`` or an action that is
            not of the form ``.key``.
        TemplateResolutionError: An action names a key missing from *params*.
    """
    parts = []
    position = 0
    for match in _ACTION_RX.finditer(pattern):
        text = pattern[position : match.start()]
        _check_text(pattern, text)
        parts.append(text)

        body = match.group(1)
        field = _FIELD_RX.fullmatch(body)
        if field is None:
            raise TemplateSyntaxError(
                f"unsupported action {ACTION_OPEN}{body}{ACTION_CLOSE}",
                pattern=pattern,
            )

        key = field.group(1)
        if key not in params:
            raise TemplateResolutionError(
                f"no value for {key!r}",
                key=key,
                pattern=pattern,
            )
        parts.append(str(params[key]))
        position = match.end()

    tail = pattern[position:]
    _check_text(pattern, tail)
    parts.append(tail)
    return "".join(parts)
