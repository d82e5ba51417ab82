from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

import httpx
import structlog

from media_watcher.errors import RemoteAPIError, TransportError
from media_watcher.models import MediaChannel, MediaStatus, UserGroup

logger = structlog.get_logger(__name__)

# Request ids are informational only; Zabbix echoes them back.
REQUEST_ID_MEDIATYPE_GET = 1
REQUEST_ID_MEDIATYPE_UPDATE = 2
REQUEST_ID_USERGROUP_GET = 10


@dataclass(frozen=True)
class ZabbixConfig:
    base_url: str
    token: str
    timeout_seconds: float = 30.0

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/api_jsonrpc.php"


def build_request(method: str, params: dict[str, Any], *, token: str, request_id: int) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "method": method,
        "params": params,
        "auth": token,
        "id": request_id,
    }


def parse_response(resp: httpx.Response) -> Any:
    """
    Returns the JSON-RPC `result`.
    Raises RemoteAPIError for a non-zero `error.code`, TransportError for anything unreadable.
    """
    try:
        data = resp.json()
    except ValueError as exc:
        raise TransportError(
            f"Unreadable response from Zabbix API (HTTP {resp.status_code}): {resp.text[:200]!r}"
        ) from exc
    if not isinstance(data, dict):
        raise TransportError("Unexpected Zabbix API response (not a JSON object)")

    error = data.get("error")
    if isinstance(error, dict):
        try:
            code = int(error.get("code") or 0)
        except (TypeError, ValueError):
            code = -1
        if code != 0:
            raise RemoteAPIError(code, str(error.get("message") or ""), str(error.get("data") or ""))

    if "result" not in data:
        raise TransportError(f"Zabbix API response has no result (HTTP {resp.status_code})")
    return data["result"]


class ZabbixClient:
    """The three JSON-RPC calls the watcher needs, over a shared httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient, config: ZabbixConfig) -> None:
        self.client = client
        self.config = config

    async def call(self, method: str, params: dict[str, Any], *, request_id: int) -> Any:
        payload = build_request(method, params, token=self.config.token, request_id=request_id)
        try:
            resp = await self.client.post(
                self.config.endpoint,
                json=payload,
                timeout=self.config.timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        return parse_response(resp)

    async def list_media_types(self, names: Iterable[str] = ()) -> list[MediaChannel]:
        params: dict[str, Any] = {"output": ["mediatypeid", "name", "status"]}
        names = [n for n in names if n]
        if names:
            params["filter"] = {"name": names}
        result = await self.call("mediatype.get", params, request_id=REQUEST_ID_MEDIATYPE_GET)
        if not isinstance(result, list):
            raise TransportError("Unexpected mediatype.get result (not a list)")

        channels: list[MediaChannel] = []
        for item in result:
            if not isinstance(item, dict) or not item.get("mediatypeid"):
                continue
            channels.append(
                MediaChannel(
                    id=str(item["mediatypeid"]),
                    name=str(item.get("name") or ""),
                    status=MediaStatus.from_api(item.get("status")),
                )
            )
        logger.info("Media types received", count=len(channels))
        return channels

    async def enable_media_type(self, media_type_id: str) -> None:
        await self.call(
            "mediatype.update",
            {"mediatypeid": media_type_id, "status": MediaStatus.ENABLED.value},
            request_id=REQUEST_ID_MEDIATYPE_UPDATE,
        )

    async def list_user_groups(self) -> list[UserGroup]:
        result = await self.call(
            "usergroup.get",
            {"output": ["usrgrpid", "name"], "selectUsers": "extend"},
            request_id=REQUEST_ID_USERGROUP_GET,
        )
        if not isinstance(result, list):
            raise TransportError("Unexpected usergroup.get result (not a list)")

        groups: list[UserGroup] = []
        for item in result:
            if not isinstance(item, dict) or not item.get("usrgrpid"):
                continue
            users = item.get("users") or []
            members = frozenset(
                str(u.get("userid")) for u in users if isinstance(u, dict) and u.get("userid")
            )
            groups.append(UserGroup(id=str(item["usrgrpid"]), name=str(item.get("name") or ""), members=members))
        logger.info("User groups received", count=len(groups))
        return groups
