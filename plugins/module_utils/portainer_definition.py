from __future__ import annotations

import re

from typing import Any

from jinja2 import ChainableUndefined, Environment, TemplateError

from .portainer_errors import RenderError


def _template_environment() -> Environment:
    # Compose files are YAML, so no HTML autoescaping, and the final newline stays.
    return Environment(
        undefined=ChainableUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )


def render_template(document: str, variables: dict[str, Any] | None) -> str:
    """
    Render the stack definition as a Jinja2 template.

    Without variables the document is returned untouched. Placeholders naming
    unknown variables render empty.
    """
    if variables is None:
        return document

    try:
        return _template_environment().from_string(document).render(variables)
    except TemplateError as e:
        raise RenderError(f"Failed to render stack definition template: {e}") from e


def image_repository(image: str) -> str:
    """Return the image reference without its tag."""
    return image.partition(":")[0]


def image_pattern(repository: str) -> re.Pattern:
    return re.compile(
        r"^(?P<prefix>[ \t]*image:[ \t]*)"
        r"(?P<quote>['\"]?)"
        + re.escape(repository)
        + r"(?::[^'\"\s]*)?"
        r"(?P=quote)"
        r"(?=[ \t]*(?:#[^\r\n]*)?\r?$)",
        re.MULTILINE,
    )


def rewrite_image(document: str, image: str | None) -> str:
    """
    Point every ``image:`` line using the repository of ``image`` at ``image``.

    The previous tag is dropped and the quoting of each line is kept. Lines
    declaring other images are left alone, and a document without a matching
    line comes back unchanged.
    """
    if not image:
        return document

    pattern = image_pattern(image_repository(image))

    def _replace(match: re.Match) -> str:
        quote = match.group("quote")
        return f"{match.group('prefix')}{quote}{image}{quote}"

    return pattern.sub(_replace, document)
