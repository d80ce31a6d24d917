"""
Portainer API Field Reference
Field names used by the stack deployment endpoints.

Use this as the source of truth for field names.
"""


class PortainerFields:
    """Verified field names from Portainer API requests and responses"""

    # Authentication
    AUTH_USERNAME = "Username"
    AUTH_PASSWORD = "Password"
    AUTH_JWT = "jwt"

    # Stacks
    STACK_ID = "Id"
    STACK_NAME = "Name"
    STACK_TYPE_QUERY = "type"
    STACK_METHOD_QUERY = "method"
    STACK_ENDPOINT_ID = "EndpointId"
    STACK_ENDPOINT_ID_QUERY = "endpointId"
    STACK_ENV = "Env"
    STACK_PRUNE = "Prune"
    STACK_PULL_IMAGE = "PullImage"
    STACK_SWARM_ID = "SwarmId"
    STACK_SWARM_ID_CREATE = "SwarmID"
    STACK_FILE_CONTENT = "StackFileContent"
    STACK_STATUS = "Status"
