from __future__ import annotations

import json

from typing import Any, Iterable

from .portainer_errors import ConfigurationError


EnvVariables = list[dict[str, str]]


def parse_env_variables(text: str) -> EnvVariables:
    """
    Parse a ``NAME=VALUE`` per line text blob into Portainer env entries.

    Literal ``\\n`` sequences are treated as line breaks, so the whole set can be
    passed through a single-line setting. Blank lines are dropped, everything
    after the first ``=`` is the value, and a line without ``=`` becomes an entry
    with an empty value. Order and duplicates are kept as given.
    """
    normalized = text.replace("\\n", "\n").strip()

    variables = []
    for line in normalized.split("\n"):
        if not line.strip():
            continue

        name, _, value = line.partition("=")
        variables.append({"name": name.strip(), "value": value.strip()})

    return variables


def merge_env_variables(original: Iterable[dict], updates: Iterable[dict]) -> EnvVariables:
    """
    Overlay ``updates`` on ``original``.

    Names already present keep their position with the updated value, new names
    are appended in the order they appear in ``updates``.
    """
    merged: dict[str, str] = {}

    for variable in original:
        merged[variable["name"]] = variable["value"]

    for variable in updates:
        merged[variable["name"]] = variable["value"]

    return [{"name": name, "value": value} for name, value in merged.items()]


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def normalize_env_variables(raw: Any) -> EnvVariables | None:
    """
    Turn the ``env_variables`` option into an ordered list of env entries.

    Accepts the text form handled by ``parse_env_variables``, a list of
    ``name``/``value`` mappings or a plain mapping. Empty input means no
    variables were supplied and returns None.
    """
    if raw is None or raw == "" or raw == [] or raw == {}:
        return None

    if isinstance(raw, str):
        return parse_env_variables(raw) or None

    if isinstance(raw, dict):
        return [{"name": str(k), "value": _to_str(v)} for k, v in raw.items()]

    if isinstance(raw, list):
        variables = []
        for index, item in enumerate(raw):
            if not isinstance(item, dict) or not item.get("name"):
                raise ConfigurationError(
                    f"env_variables item {index} must be a mapping with a 'name' key, got: {item!r}"
                )
            variables.append({"name": str(item["name"]), "value": _to_str(item.get("value"))})
        return variables

    raise ConfigurationError(
        f"env_variables must be a string, a list or a mapping, got {type(raw).__name__}"
    )
