"""Settings helpers for list-valued environment variables."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


def _require_items(items: list[str]) -> list[str]:
    if not items:
        raise ValueError("Origin list must not be empty")
    return items


def parse_string_list(value: str | list[str]) -> list[str]:
    """Parse an origin list given as a list, a JSON array string or comma-separated text.

    Blank CSV segments are dropped. Raises ValueError for malformed JSON,
    non-string JSON items, or a list that ends up empty.
    """
    if isinstance(value, list):
        return _require_items(value)

    text = value.strip()
    if not text.startswith("["):
        return _require_items([part.strip() for part in text.split(",") if part.strip()])

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON array: {e}") from e
    if not isinstance(parsed, list) or any(not isinstance(item, str) for item in parsed):
        raise ValueError("JSON value must be an array of strings")
    return _require_items(parsed)


class StringListEnvSettingsSource(EnvSettingsSource):
    """Env source that hands ``cors_origins`` to its validator as the raw string.

    pydantic-settings would otherwise JSON-decode list fields itself and
    reject the comma-separated form.
    """

    list_fields = frozenset({"cors_origins"})

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name in self.list_fields and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
