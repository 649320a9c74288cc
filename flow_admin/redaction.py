"""Credential redaction for node credentials returned to API callers.

The credential definition for a node type is authoritative for what is
exposed:

- ``password`` fields are replaced by a ``has_<field>`` presence flag. The
  stored value never appears in the output under any key.
- Every other declared field is passed through, defaulting to ``""``.
- Stored fields that the definition does not declare are dropped.

Usage::

    from flow_admin.redaction import redact_credentials

    safe = redact_credentials(definition, stored)
"""

from __future__ import annotations

from typing import Any, Mapping

from flow_admin.models import CredentialField

_PRESENCE_PREFIX = "has_"


def is_set(value: Any) -> bool:
    """``None`` and the empty string both mean "not set"."""
    return value is not None and value != ""


def redact_credentials(
    definition: Mapping[str, CredentialField | Mapping[str, Any]] | None,
    credentials: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Return the caller-safe view of ``credentials`` under ``definition``."""
    if credentials is None:
        return {}

    result: dict[str, Any] = {}
    for name, field in (definition or {}).items():
        if not isinstance(field, CredentialField):
            field = CredentialField.model_validate(field)
        value = credentials.get(name)
        if field.is_password:
            result[_PRESENCE_PREFIX + name] = is_set(value)
        else:
            result[name] = value or ""
    return result
