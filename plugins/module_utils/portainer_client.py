from __future__ import annotations

import json

from urllib.parse import urlencode
from typing import Literal, Any, overload
from dataclasses import dataclass
from enum import Enum

from ansible.module_utils.urls import fetch_url
from ansible.module_utils.basic import AnsibleModule

from .portainer_fields import PortainerFields as PF


def _decode_body(body: Any) -> Any:
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")

    if isinstance(body, str) and body:
        try:
            return json.loads(body)
        except ValueError:
            return body

    return body


class PortainerApiError(Exception):
    def __init__(
        self,
        message,
        status: int | None = None,
        body: Any | None = None,
        url: str | None = None,
        method: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.body = body
        self.url = url
        self.method = method
        self.data = data

    @classmethod
    def from_response(
        cls, info: dict, url: str, method: str, data: dict | None = None
    ) -> PortainerApiError:
        body = _decode_body(info.get("body", ""))
        rendered_body = json.dumps(body, indent=2) if isinstance(body, (dict, list)) else body

        return cls(
            f"HTTP Status {info['status']} ({method} {url}): {rendered_body or info.get('msg', '')}",
            status=info["status"],
            body=body,
            url=url,
            method=method,
            data=data,
        )


class RequestMethod(Enum):
    GET = "GET"
    PUT = "PUT"
    POST = "POST"


@dataclass(frozen=True)
class PortainerSession:
    """Bearer token obtained from ``/auth``, passed along with each request."""

    token: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def __repr__(self) -> str:
        return "PortainerSession(token='***')"


class PortainerClient:

    class exc:
        PortainerApiError = PortainerApiError

    ARGSPEC = dict(
        portainer_url=dict(type="str", required=True, aliases=["portainer_host"]),
        username=dict(type="str", required=True),
        password=dict(type="str", required=True, no_log=True),
        validate_certs=dict(type="bool", default=True),
        timeout=dict(type="int", default=30),
    )

    def __init__(self, module: AnsibleModule):
        self.module = module

        self.portainer_url = module.params["portainer_url"].rstrip("/")
        self.username = module.params["username"]
        self.password = module.params["password"]
        self.timeout = module.params["timeout"]

        self.headers = {
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }

    def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        session: PortainerSession | None = None,
    ) -> Any:
        return self._make_request(RequestMethod.GET, endpoint, params=params, session=session)

    def post(
        self,
        endpoint: str,
        data: dict[str, Any] | None = None,
        params: dict | None = None,
        session: PortainerSession | None = None,
    ) -> Any:
        return self._make_request(
            RequestMethod.POST, endpoint=endpoint, data=data, params=params, session=session
        )

    def put(
        self,
        endpoint: str,
        data: dict[str, Any] | None = None,
        params: dict | None = None,
        session: PortainerSession | None = None,
    ) -> Any:
        return self._make_request(
            RequestMethod.PUT, endpoint=endpoint, data=data, params=params, session=session
        )

    @overload
    def _make_request(
        self,
        method: RequestMethod,
        endpoint: str,
        return_info: Literal[False] = False,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        session: PortainerSession | None = None,
    ) -> Any: ...

    @overload
    def _make_request(
        self,
        method: RequestMethod,
        endpoint: str,
        return_info: Literal[True],
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        session: PortainerSession | None = None,
    ) -> dict[str, Any]: ...

    def _make_request(
        self,
        method: RequestMethod,
        endpoint: str,
        return_info: bool = False,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        session: PortainerSession | None = None,
    ) -> Any:
        """Make HTTP request to Portainer API"""
        url = f"{self.portainer_url}/api{endpoint}"

        if params:
            # Convert booleans to lowercase strings
            params_converted = {
                k: str(v).lower() if isinstance(v, bool) else v for k, v in params.items()
            }
            url = f"{url}?{urlencode(params_converted)}"

        headers = dict(self.headers)
        if session is not None:
            headers.update(session.headers)

        _data = json.dumps(data) if data is not None else None

        resp, info = fetch_url(
            self.module,
            url,
            method=method.value,
            headers=headers,
            data=_data,
            force=True,
            timeout=self.timeout,
        )

        if return_info:
            return info

        if info["status"] not in [200, 201, 204]:
            raise PortainerApiError.from_response(info, url=url, method=method.value, data=data)

        if resp:
            body = resp.read()

            if body:
                try:
                    return json.loads(body)
                except ValueError as e:
                    text = _decode_body(body)
                    raise PortainerApiError(
                        f"HTTP Status {info['status']} ({method.value} {url}): "
                        f"response is not valid JSON ({e}): {text}",
                        status=info["status"],
                        body=text,
                        url=url,
                        method=method.value,
                        data=data,
                    ) from e
        return None

    def authenticate(self) -> PortainerSession:
        """Exchange the configured credentials for a bearer token."""
        response = self.post(
            "/auth",
            data={PF.AUTH_USERNAME: self.username, PF.AUTH_PASSWORD: self.password},
        )

        token = (response or {}).get(PF.AUTH_JWT)
        if not token:
            raise PortainerApiError(
                f"Authentication response from {self.portainer_url} did not contain a token",
                url=f"{self.portainer_url}/api/auth",
                method=RequestMethod.POST.value,
            )

        return PortainerSession(token=token)

    def logout(self, session: PortainerSession) -> None:
        """
        Invalidate the session on the server.

        Some Portainer releases reject this call for API sessions, so a failure
        is only reported as a warning.
        """
        try:
            self.post("/auth/logout", session=session)
        except PortainerApiError as e:
            self.module.warn(f"Logout from Portainer failed, ignoring: {e}")

    def ping(self) -> None:
        """Check that the server answers before logging in."""
        endpoint = "/system/status"
        info = self._make_request(RequestMethod.GET, endpoint, return_info=True)

        if info["status"] != 200:
            self.module.warn("Cannot reach portainer - check IP and port.")
            raise PortainerApiError.from_response(
                info, url=f"{self.portainer_url}/api{endpoint}", method=RequestMethod.GET.value
            )
