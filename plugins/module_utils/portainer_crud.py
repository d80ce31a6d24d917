from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, TypeVar, Any

from .portainer_fields import PortainerFields as PF
from .portainer_client import PortainerSession


if TYPE_CHECKING:
    from .portainer_module import PortainerModule


T = TypeVar("T", dict, list)


class BaseCRUD:

    def __init__(
        self,
        module: PortainerModule,
        endpoint: str,
        name_field: str,
    ) -> None:
        self.module = module
        self._endpoint = endpoint
        self.name_field = name_field

    def _get_create_endpoint(self, **kwargs) -> str:
        return self.endpoint

    def _get_update_endpoint(self, id: int) -> str:
        return f"{self.endpoint}/{id}"

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def list_items(
        self, session: PortainerSession, params: dict | None = None
    ) -> list[dict[str, Any]]:

        return self._process_response(
            self.module.client.get(self.endpoint, params=params, session=session) or []
        )

    def find_item(
        self,
        session: PortainerSession,
        name: str,
        filters: dict | None = None,
        params: dict | None = None,
    ) -> dict[str, Any] | None:
        """Return the first item named ``name`` matching every filter, if any."""
        if not name:
            raise ValueError("Name should not be empty")

        for item in self.list_items(session, params=params):
            if item.get(self.name_field) != name:
                continue
            if filters and any(item.get(k) != v for k, v in filters.items()):
                continue
            return item

        return None

    def create_item(
        self,
        session: PortainerSession,
        item_data: dict,
        params: dict | None = None,
        **endpoint_kwargs,
    ) -> dict[str, Any]:
        endpoint = self._get_create_endpoint(**endpoint_kwargs)

        return self._process_response(
            self.module.client.post(endpoint, item_data, params=params, session=session) or {}
        )

    def update_item(
        self,
        session: PortainerSession,
        item_id: int,
        changes: dict,
        params: dict | None = None,
    ) -> dict[str, Any]:
        if item_id is None:
            raise ValueError("Item ID cannot be None")

        endpoint = self._get_update_endpoint(item_id)

        return self._process_response(
            self.module.client.put(endpoint, data=changes, params=params, session=session) or {}
        )

    def _process_response(self, data: T) -> T:
        """
        Hook for subclasses to normalize/transform response data.
        Can handle both single items and lists.
        """
        if not data:
            return data

        if isinstance(data, list):
            return [self._process_single_item(item) for item in data]
        return self._process_single_item(data)

    def _process_single_item(self, item: dict) -> dict:
        """Process a single item. Override this in subclasses."""
        return item


class StackType(IntEnum):
    SWARM = 1
    COMPOSE = 2

    @property
    def create_path(self) -> str:
        return "swarm" if self is StackType.SWARM else "standalone"


class StackCRUD(BaseCRUD):

    CREATE_METHOD = "string"

    def __init__(self, module: PortainerModule) -> None:
        super().__init__(module, endpoint="/stacks", name_field=PF.STACK_NAME)

    def _get_create_endpoint(self, stack_type: StackType = StackType.COMPOSE) -> str:
        return f"{self.endpoint}/create/{stack_type.create_path}/{self.CREATE_METHOD}"

    def find_stack(
        self, session: PortainerSession, name: str, endpoint_id: int
    ) -> dict[str, Any] | None:
        # Stack names are only unique per endpoint
        return self.find_item(session, name, filters={PF.STACK_ENDPOINT_ID: endpoint_id})

    def create_stack(
        self,
        session: PortainerSession,
        stack_type: StackType,
        endpoint_id: int,
        data: dict,
    ) -> dict[str, Any]:
        params = {
            PF.STACK_TYPE_QUERY: int(stack_type),
            PF.STACK_METHOD_QUERY: self.CREATE_METHOD,
            PF.STACK_ENDPOINT_ID_QUERY: endpoint_id,
        }
        return self.create_item(session, data, params=params, stack_type=stack_type)

    def update_stack(
        self, session: PortainerSession, stack_id: int, endpoint_id: int, data: dict
    ) -> dict[str, Any]:
        params = {PF.STACK_ENDPOINT_ID_QUERY: endpoint_id}
        return self.update_item(session, stack_id, changes=data, params=params)

    def get_stack_file_content(self, session: PortainerSession, stack_id: int) -> str:
        stack_file = self.module.client.get(f"{self.endpoint}/{stack_id}/file", session=session)
        return (stack_file or {}).get(PF.STACK_FILE_CONTENT, "")

    def _process_single_item(self, item: dict[str, Any]) -> dict[str, Any]:
        if PF.STACK_ENV in item and item[PF.STACK_ENV] is None:
            return {**item, PF.STACK_ENV: []}

        return item


class PortainerCRUD:

    def __init__(self, module: PortainerModule) -> None:
        self.module = module
        self.stack = StackCRUD(module)
