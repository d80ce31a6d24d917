class ModuleDocFragment(object):

    DOCUMENTATION = r"""
    options:
        portainer_url:
            description: URL of the Portainer instance, eg. C(https://portainer.example.com)
            required: true
            type: str
            aliases: ['portainer_host']
        username:
            description:
                - Username used to log in to Portainer.
                - Use a dedicated deployment account rather than an administrator.
            required: true
            type: str
        password:
            description: Password used to log in to Portainer
            required: true
            type: str
        timeout:
            description: Timeout for API requests
            type: int
            default: 30
        validate_certs:
            description: Validate SSL certificates
            type: bool
            default: true
    """
