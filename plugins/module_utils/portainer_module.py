from __future__ import annotations

import copy

from ansible.module_utils.basic import AnsibleModule

from .portainer_client import PortainerClient
from .portainer_crud import PortainerCRUD

# Share of control characters above which a stack file is treated as binary
CONTROL_CHAR_LIMIT = 0.30
TEXT_CONTROL_CHARS = (0x09, 0x0A, 0x0D)


def binary_content_reason(content: bytes) -> str | None:
    """Name the first sign that ``content`` is not text, if there is one."""
    try:
        content.decode("utf-8")
    except UnicodeDecodeError:
        return "invalid UTF-8 encoding"

    if b"\x00" in content:
        return "null bytes detected"

    control_chars = sum(1 for b in content if b < 0x20 and b not in TEXT_CONTROL_CHARS)
    if content and control_chars / len(content) > CONTROL_CHAR_LIMIT:
        return "excessive control characters"

    return None


class IdempotencyManager:

    def __init__(self, module: PortainerModule):
        self.module = module

    def build_diff(self, before_data: dict | None = None, after_data: dict | None = None) -> dict:
        """Before/after views for ``--diff``; fields missing from ``after_data`` stay as before."""
        before = copy.deepcopy(before_data or {})
        after = copy.deepcopy({**before, **(after_data or {})})

        return {"before": before, "after": after}


class PortainerModule(AnsibleModule):
    def __init__(self, *args, **kwargs):
        super(PortainerModule, self).__init__(*args, **kwargs)

        self.client = PortainerClient(self)
        self.crud = PortainerCRUD(self)
        self.idempotency = IdempotencyManager(self)

    @classmethod
    def generate_argspec(cls, **kwargs) -> dict:
        return {**PortainerClient.ARGSPEC, **kwargs}

    def run_checks(self) -> None:
        self.client.ping()

    def find_text_content_error(
        self,
        content: bytes,
        description: str = "content",
        filepath: str | None = None,
    ) -> str | None:
        """Return why ``content`` cannot be used as text, or None when it can."""
        reason = binary_content_reason(content)
        if reason is None:
            return None

        message = f"{description.capitalize()} contains binary data ({reason})"
        return f"{message}: {filepath}" if filepath else message
