#!/usr/bin/python
# portainer_stack_deploy.py - A module to deploy stack definitions to Portainer.
# License: GPL-3.0-or-later
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

from __future__ import absolute_import, division, print_function, annotations

__metaclass__ = type

DOCUMENTATION = r"""
---
module: portainer_stack_deploy
short_description: Deploy a stack definition to Portainer
description:
    - Create or update a Docker stack in Portainer from a local stack definition file.
    - The stack is looked up by O(stack_name) on O(endpoint_id). When it exists it is updated,
      otherwise it is created.
    - The stack definition can be rendered as a Jinja2 template with O(template_variables)
      before it is sent.
    - The image of the services using the repository of O(image) can be replaced with O(image),
      so a pipeline can deploy the tag it just built without editing the file.
    - Environment variables given in O(env_variables) are merged into the ones already set on an
      existing stack, new values win.
    - Logs in with O(username) and O(password) and logs out again once the deployment is done,
      whether it succeeded or not.
version_added: "1.0.0"
options:
    stack_name:
        description:
            - Name of the stack to deploy.
            - Together with O(endpoint_id) identifies an existing stack.
        type: str
        required: true
        aliases: ['name']

    endpoint_id:
        description:
            - ID of the Portainer endpoint (environment) to deploy to.
            - Values that cannot be read as an integer, and V(0), fall back to V(1).
        type: raw
        required: false

    swarm_id:
        description:
            - Identifier of the Docker Swarm cluster.
            - When set, new stacks are created as swarm stacks, otherwise as standalone (compose) stacks.
        type: str
        required: false

    stack_definition:
        description:
            - Path to the Docker Compose / stack file on the target host.
            - Required when the stack does not exist yet.
            - When omitted for an existing stack, Portainer keeps the current definition.
            - File must be valid UTF-8 text (binary files are rejected).
        type: path
        required: false

    template_variables:
        description:
            - Variables used to render O(stack_definition) as a Jinja2 template.
            - Either a mapping or a JSON encoded object.
            - Placeholders naming unknown variables render empty.
            - When omitted the file is sent as is.
        type: raw
        required: false

    env_variables:
        description:
            - Environment variables to set on the stack.
            - Either text with one C(NAME=VALUE) per line (a literal C(\n) also separates lines),
              a list of mappings with C(name) and C(value) keys, or a plain mapping.
            - On existing stacks these are merged into the variables already set, keeping their order.
        type: raw
        required: false

    image:
        description:
            - Full image reference, including tag, to insert into the stack definition.
            - Every C(image:) line using the same repository is rewritten, whatever its current tag.
        type: str
        required: false

    prune_stack:
        description:
            - Remove services that are no longer defined in the stack definition.
            - Only affects updates.
        type: bool
        default: false

    pull_image:
        description:
            - Pull the images again when updating the stack.
            - Only affects updates.
        type: bool
        default: false

extends_documentation_fragment:
    - cideploy.portainer.portainer_client

notes:
    - The module supports check mode (C(--check)). Login, lookup and logout still run, the stack is
      not created or updated.
    - The module supports diff mode (C(--diff)) showing the environment variables and the stack file.
    - An existing stack is always updated, the task always reports a change.
"""

EXAMPLES = r"""
- name: Deploy the freshly built image
  portainer_stack_deploy:
    portainer_url: https://portainer.example.com
    username: ci-deployer
    password: "{{ portainer_password }}"
    stack_name: myapp
    endpoint_id: 2
    stack_definition: /srv/deploy/docker-compose.yml
    image: ghcr.io/myorg/myapp:{{ git_sha }}

- name: Deploy a swarm stack with rendered variables and environment
  portainer_stack_deploy:
    portainer_url: https://portainer.example.com
    username: ci-deployer
    password: "{{ portainer_password }}"
    stack_name: webapp
    swarm_id: jpofkc0i9uo9wtx1zesuk649w
    stack_definition: /srv/deploy/stack.yml
    template_variables:
      replicas: 3
      domains:
        - example.com
        - www.example.com
    env_variables: |
      APP_ENV=production
      DATABASE_URL=postgres://db:5432/app?sslmode=disable
    prune_stack: true
    pull_image: true

- name: Only change environment variables of an existing stack
  portainer_stack_deploy:
    portainer_url: https://portainer.example.com
    username: ci-deployer
    password: "{{ portainer_password }}"
    stack_name: myapp
    env_variables:
      - name: LOG_LEVEL
        value: debug
"""

RETURN = r"""
changed:
    description: Whether the stack was created or updated
    type: bool
    returned: always
    sample: true

msg:
    description: Human-readable message describing the operation result
    type: str
    returned: always
    sample: "Stack updated."

action:
    description: Whether the stack was created or updated
    type: str
    returned: success
    sample: update

stack_definition:
    description: Stack definition sent to Portainer after rendering and image replacement
    type: str
    returned: success
    sample: "services:\n  web:\n    image: ghcr.io/myorg/myapp:1.2.3\n"

stack:
    description: Stack information returned by Portainer, or the request that would be sent in check mode
    type: dict
    returned: success
    contains:
        Id:
            description: Unique identifier of the stack
            type: int
            sample: 5
        Name:
            description: Name of the stack
            type: str
            sample: "myapp"
        EndpointId:
            description: ID of the endpoint where the stack is deployed
            type: int
            sample: 1
        SwarmId:
            description: Swarm cluster ID (for swarm stacks)
            type: str
            sample: "jpofkc0i9uo9wtx1zesuk649w"
        Env:
            description: Environment variables configured for the stack
            type: list
            elements: dict
            sample:
              - name: "APP_ENV"
                value: "production"

status:
    description: HTTP status of a failed Portainer request
    type: int
    returned: failure
    sample: 500

error_type:
    description: Class of the error that stopped the deployment
    type: str
    returned: failure
    sample: PreconditionError
"""

import json
import re

from enum import Enum
from typing import Any, ClassVar
from dataclasses import dataclass, field

from ..module_utils.portainer_fields import PortainerFields as PF
from ..module_utils.portainer_module import PortainerModule
from ..module_utils.portainer_client import PortainerSession
from ..module_utils.portainer_crud import StackCRUD, StackType
from ..module_utils.portainer_definition import render_template, rewrite_image
from ..module_utils.portainer_env import merge_env_variables, normalize_env_variables
from ..module_utils.portainer_errors import (
    ConfigurationError,
    DocumentError,
    PreconditionError,
    StackDeployError,
)


DEFAULT_ENDPOINT_ID = 1

_LEADING_INTEGER = re.compile(r"^\s*([+-]?\d+)")


class DeploymentState(Enum):
    NO_STACK_DEFINITION_PROVIDED = "no_stack_definition_provided"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


@dataclass
class Stack:
    id: int | None = None
    name: str | None = None
    endpoint_id: int | None = None
    swarm_id: str | None = None
    env: list[dict] | None = None
    status: int | None = None

    fields_mapping: ClassVar[dict] = {
        PF.STACK_ID: "id",
        PF.STACK_NAME: "name",
        PF.STACK_ENDPOINT_ID: "endpoint_id",
        PF.STACK_SWARM_ID: "swarm_id",
        PF.STACK_ENV: "env",
        PF.STACK_STATUS: "status",
    }

    @classmethod
    def from_dict(cls, data: dict) -> Stack:
        stack = cls()
        stack.update_from_dict(data)
        return stack

    def update_from_dict(self, data: dict) -> None:
        for k, v in data.items():
            if k in self.fields_mapping:
                setattr(self, self.fields_mapping[k], v)

    def to_dict(self) -> dict:
        return {
            k: getattr(self, v)
            for k, v in self.fields_mapping.items()
            if getattr(self, v) is not None
        }


@dataclass
class CreateStackRequest:
    name: str
    stack_file_content: str
    swarm_id: str | None = None
    env: list[dict] | None = None

    def to_dict(self) -> dict:
        data = {
            PF.STACK_NAME: self.name,
            PF.STACK_FILE_CONTENT: self.stack_file_content,
            PF.STACK_SWARM_ID_CREATE: self.swarm_id,
            PF.STACK_ENV: self.env,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class UpdateStackRequest:
    env: list[dict] = field(default_factory=list)
    stack_file_content: str | None = None
    prune: bool = False
    pull_image: bool = False

    def to_dict(self) -> dict:
        data = {
            PF.STACK_ENV: self.env,
            PF.STACK_FILE_CONTENT: self.stack_file_content,
            PF.STACK_PRUNE: self.prune,
            PF.STACK_PULL_IMAGE: self.pull_image,
        }
        return {k: v for k, v in data.items() if v is not None}


def parse_endpoint_id(value: Any) -> int:
    """Read the endpoint id leniently, defaulting to the first endpoint."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_ENDPOINT_ID

    if isinstance(value, int):
        return value or DEFAULT_ENDPOINT_ID

    match = _LEADING_INTEGER.match(str(value))
    if not match:
        return DEFAULT_ENDPOINT_ID

    return int(match.group(1)) or DEFAULT_ENDPOINT_ID


def parse_template_variables(value: Any) -> dict | None:
    if value is None or value == "":
        return None

    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise ConfigurationError(f"template_variables is not valid JSON: {e}") from e

        # JSON null disables templating like an absent option
        if value is None:
            return None

    if not isinstance(value, dict):
        raise ConfigurationError(
            f"template_variables must be a mapping of variable names, got {type(value).__name__}"
        )

    return value


@dataclass
class DeploymentSettings:
    stack_name: str
    endpoint_id: int = DEFAULT_ENDPOINT_ID
    swarm_id: str | None = None
    stack_definition: str | None = None
    template_variables: dict | None = None
    env_variables: list[dict] | None = None
    image: str | None = None
    prune_stack: bool = False
    pull_image: bool = False

    @classmethod
    def from_module(cls, module: PortainerModule) -> DeploymentSettings:
        params = module.params

        if not params["stack_name"]:
            raise ConfigurationError("stack_name must not be empty")

        return cls(
            stack_name=params["stack_name"],
            endpoint_id=parse_endpoint_id(params["endpoint_id"]),
            swarm_id=params["swarm_id"] or None,
            stack_definition=params["stack_definition"] or None,
            template_variables=parse_template_variables(params["template_variables"]),
            env_variables=normalize_env_variables(params["env_variables"]),
            image=params["image"] or None,
            prune_stack=bool(params["prune_stack"]),
            pull_image=bool(params["pull_image"]),
        )

    @property
    def stack_type(self) -> StackType:
        return StackType.SWARM if self.swarm_id else StackType.COMPOSE


class StackDefinitionBuilder:
    """
    Produces the stack definition text to deploy.

    Reads the definition file, renders it with the template variables and points
    the matching ``image:`` lines at the requested image. Everything here happens
    before Portainer is contacted.
    """

    def __init__(self, module: PortainerModule, settings: DeploymentSettings) -> None:
        self.module = module
        self.settings = settings

    def build(self) -> str | None:
        if not self.settings.stack_definition:
            self.module.log("No stack definition file provided. Will not update stack definition.")
            return None

        self.module.log(f"Reading stack definition file from {self.settings.stack_definition}")
        document = self._read_file_safely(self.settings.stack_definition, "stack definition file")

        if self.settings.template_variables is not None:
            self.module.log(
                "Applying template variables for keys: "
                f"{', '.join(self.settings.template_variables)}"
            )
            document = render_template(document, self.settings.template_variables)

        if not self.settings.image:
            self.module.log("No new image provided. Will use image in stack definition.")
            return document

        self.module.log(f"Inserting image {self.settings.image} into the stack definition")
        document = rewrite_image(document, self.settings.image)
        self.module.debug(f"Updated stack definition:\n{document}")

        return document

    def _read_file_safely(self, filepath: str, description: str = "file") -> str:
        try:
            with open(filepath, "rb") as f:
                content = f.read()
        except FileNotFoundError as e:
            raise DocumentError(
                f"{description.capitalize()} not found: {filepath}", filepath=filepath
            ) from e
        except PermissionError as e:
            raise DocumentError(
                f"Permission denied reading {description}: {filepath}", filepath=filepath
            ) from e
        except IOError as e:
            raise DocumentError(
                f"Failed to read {description} {filepath}: {str(e)}", filepath=filepath
            ) from e

        if not content:
            raise DocumentError(f"{description.capitalize()} is empty: {filepath}", filepath=filepath)

        error = self.module.find_text_content_error(content, description, filepath=filepath)
        if error:
            raise DocumentError(error, filepath=filepath)

        return content.decode("utf-8")


class StackRepository:
    """Stack operations bound to one authenticated Portainer session."""

    def __init__(self, crud: StackCRUD, session: PortainerSession) -> None:
        self.crud = crud
        self.session = session

    def find_stack(self, name: str, endpoint_id: int) -> Stack | None:
        stack_data = self.crud.find_stack(self.session, name=name, endpoint_id=endpoint_id)

        if stack_data is None:
            return None

        stack = Stack.from_dict(stack_data)
        if stack.env is None:
            stack.env = []
        return stack

    def create_stack(
        self, stack_type: StackType, endpoint_id: int, request: CreateStackRequest
    ) -> Stack:
        stack_data = self.crud.create_stack(
            self.session,
            stack_type=stack_type,
            endpoint_id=endpoint_id,
            data=request.to_dict(),
        )
        return Stack.from_dict(stack_data or {})

    def update_stack(self, stack: Stack, request: UpdateStackRequest) -> Stack:
        stack_data = self.crud.update_stack(
            self.session,
            stack_id=stack.id,
            endpoint_id=stack.endpoint_id,
            data=request.to_dict(),
        )
        return Stack.from_dict(stack_data or {})

    def get_stack_file_content(self, stack: Stack) -> str:
        return self.crud.get_stack_file_content(self.session, stack.id)


class StackDeployer:
    """
    Reconciles the desired stack with what Portainer runs.

    Looks the stack up by name and endpoint, then updates it when found or
    creates it otherwise. The Portainer session is opened before the lookup and
    closed exactly once afterwards, on success and on failure alike.
    """

    def __init__(
        self,
        module: PortainerModule,
        results: dict,
        settings: DeploymentSettings,
        definition_builder: StackDefinitionBuilder,
    ) -> None:
        self.module = module
        self.client = module.client
        self.idempotency = module.idempotency

        self.settings = settings
        self.definition_builder = definition_builder

        self.results = results
        self.check_mode = module.check_mode
        self.diff_mode = module._diff

    @classmethod
    def from_module(cls, module: PortainerModule, results: dict) -> StackDeployer:
        settings = DeploymentSettings.from_module(module)
        return cls(
            module,
            results,
            settings=settings,
            definition_builder=StackDefinitionBuilder(module, settings),
        )

    def run(self) -> None:
        document = self.definition_builder.build()
        self.results["stack_definition"] = document

        self.module.run_checks()

        self.module.log("Logging in to Portainer instance...")
        session = self.client.authenticate()

        try:
            repository = StackRepository(self.module.crud.stack, session)
            existing_stack = repository.find_stack(
                self.settings.stack_name, self.settings.endpoint_id
            )

            state = self.resolve_state(existing_stack, document)

            if state == DeploymentState.EXISTS:
                self.update(repository, existing_stack, document)
            elif state == DeploymentState.NOT_EXISTS:
                self.create(repository, document)
            else:
                raise PreconditionError(
                    f"Stack with name {self.settings.stack_name} does not exist "
                    "and no stack definition file was provided."
                )
        finally:
            self.module.log("Logging out from Portainer instance...")
            self.client.logout(session)

    @staticmethod
    def resolve_state(existing_stack: Stack | None, document: str | None) -> DeploymentState:
        if existing_stack is not None:
            return DeploymentState.EXISTS
        if document is None:
            return DeploymentState.NO_STACK_DEFINITION_PROVIDED
        return DeploymentState.NOT_EXISTS

    def update(self, repository: StackRepository, stack: Stack, document: str | None) -> None:
        self.module.log(f"Found existing stack with name: {self.settings.stack_name}")

        env = list(stack.env or [])
        if self.settings.env_variables is not None:
            self.module.debug(f"Old environment variables: {json.dumps(env)}")
            env = merge_env_variables(env, self.settings.env_variables)
            self.module.log(f"Updated environment variables for keys: {_env_names(env)}")
        else:
            self.module.log("No environment variables provided, keeping existing ones.")

        request = UpdateStackRequest(
            env=env,
            stack_file_content=document,
            prune=self.settings.prune_stack,
            pull_image=self.settings.pull_image,
        )

        if self.diff_mode:
            self.results["diff"] = self.idempotency.build_diff(
                before_data={
                    PF.STACK_ENV: stack.env,
                    PF.STACK_FILE_CONTENT: repository.get_stack_file_content(stack),
                },
                after_data={
                    k: v
                    for k, v in request.to_dict().items()
                    if k in (PF.STACK_ENV, PF.STACK_FILE_CONTENT)
                },
            )

        updated = Stack()
        if not self.check_mode:
            self.module.log("Updating existing stack...")
            updated = repository.update_stack(stack, request)
            self.module.log("Successfully updated existing stack")

        self.results["stack"] = updated.to_dict() or {
            **stack.to_dict(),
            **request.to_dict(),
        }
        self.results["changed"] = True
        self.results["action"] = "update"
        self.results["msg"] = "Stack updated."

    def create(self, repository: StackRepository, document: str) -> None:
        stack_type = self.settings.stack_type

        request = CreateStackRequest(
            name=self.settings.stack_name,
            stack_file_content=document,
            swarm_id=self.settings.swarm_id,
            env=self.settings.env_variables,
        )

        if self.diff_mode:
            self.results["diff"] = self.idempotency.build_diff(
                before_data={},
                after_data=request.to_dict(),
            )

        created = Stack()
        if not self.check_mode:
            self.module.log(f"Deploying new {stack_type.name.lower()} stack...")
            created = repository.create_stack(
                stack_type, endpoint_id=self.settings.endpoint_id, request=request
            )
            self.module.log(
                f"Successfully created new stack with name: {self.settings.stack_name}"
            )

        self.results["stack"] = created.to_dict() or {
            PF.STACK_ENDPOINT_ID: self.settings.endpoint_id,
            **request.to_dict(),
        }
        self.results["changed"] = True
        self.results["action"] = "create"
        self.results["msg"] = "Stack created."


def _env_names(env: list[dict]) -> str:
    return ", ".join(variable["name"] for variable in env)


def main():

    argument_spec = PortainerModule.generate_argspec(
        stack_name=dict(type="str", required=True, aliases=["name"]),
        endpoint_id=dict(type="raw"),
        swarm_id=dict(type="str"),
        stack_definition=dict(type="path"),
        template_variables=dict(type="raw"),
        env_variables=dict(type="raw"),
        image=dict(type="str"),
        prune_stack=dict(type="bool", default=False),
        pull_image=dict(type="bool", default=False),
    )

    module = PortainerModule(
        argument_spec=argument_spec,
        supports_check_mode=True,
    )

    try:
        results = dict(changed=False)

        StackDeployer.from_module(module, results).run()

        module.log("Deployment done")
        module.exit_json(**results)

    except module.client.exc.PortainerApiError as e:
        module.fail_json(
            msg=f"API request failed: {e}",
            error_type=type(e).__name__,
            status=e.status,
            body=e.body,
            url=e.url,
            method=e.method,
        )

    except StackDeployError as e:
        module.fail_json(msg=str(e), error_type=type(e).__name__)

    except Exception as e:
        module.fail_json(msg=f"Error deploying stack: {str(e)}", error_type=type(e).__name__)


if __name__ == "__main__":
    main()
