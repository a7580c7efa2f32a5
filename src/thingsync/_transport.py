"""Collaborator interfaces and their REST implementation.

The engine only talks to structural interfaces: two snapshot sources, a
device directory and a command transport.  :class:`RestBackend` implements
all of them against the home server's HTTP API with aiohttp.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from thingsync._constants import (
    PRIVATE_LIST_PATH,
    PUBLIC_LIST_PATH,
    SET_COLOR_PATH,
    SET_STATE_PATH,
    THINGS_PATH,
    USER_AGENT,
)
from thingsync.config import EngineConfig
from thingsync.exceptions import FetchFailure
from thingsync.models.command import CommandRequest
from thingsync.models.snapshot import SourceSnapshot
from thingsync.models.target import Source

_logger = logging.getLogger(__name__)


class SnapshotSource(Protocol):
    """One directory of devices (cloud or local network).

    Implementations raise :class:`FetchFailure` (or ``OSError`` /
    ``TimeoutError``) when the directory cannot be reached.
    """

    async def fetch_snapshots(self) -> list[SourceSnapshot]:
        ...


class DeviceDirectory(Protocol):
    """Resolves a device oid to the human label both sources report."""

    async def device_name(self, oid: str) -> str | None:
        ...


class CommandTransport(Protocol):
    """Delivers a command; ``True`` means the send was accepted, not that it took effect."""

    async def send_command(self, request: CommandRequest) -> bool:
        ...


class RestSnapshotSource:
    """:class:`SnapshotSource` bound to one of the two list endpoints."""

    def __init__(self, backend: RestBackend, source: Source) -> None:
        self._backend = backend
        self.source = source

    async def fetch_snapshots(self) -> list[SourceSnapshot]:
        return await self._backend.fetch_snapshots(self.source)


class RestBackend:
    """aiohttp implementation of every collaborator interface."""

    _LIST_PATHS: dict[Source, str] = {
        Source.PUBLIC: PUBLIC_LIST_PATH,
        Source.PRIVATE: PRIVATE_LIST_PATH,
    }

    def __init__(self, config: EngineConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self.public = RestSnapshotSource(self, Source.PUBLIC)
        self.private = RestSnapshotSource(self, Source.PRIVATE)

    def _url(self, path: str) -> str:
        return f"{self._config.base_url}{path}"

    async def _get_json(self, path: str, *, source: str = "") -> Any:
        url = self._url(path)
        _logger.debug("GET %s", url)
        timeout = aiohttp.ClientTimeout(total=self._config.fetch_timeout)
        try:
            async with self._http.get(url, headers={"user-agent": USER_AGENT}, timeout=timeout) as resp:
                body = await resp.read()
                if resp.status != 200:
                    raise FetchFailure(
                        f"HTTP {resp.status} from {path}: {body[:200]!r}",
                        source=source,
                        status_code=resp.status,
                    )
        except FetchFailure:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise FetchFailure(f"Request to {path} failed: {exc}", source=source) from exc

        try:
            return json.loads(body.decode("utf-8"))
        except ValueError as exc:
            # Covers both UnicodeDecodeError and JSONDecodeError.
            raise FetchFailure(f"Invalid JSON from {path}: {body[:200]!r}", source=source) from exc

    async def _post_form(self, path: str, form: dict[str, str]) -> bool:
        url = self._url(path)
        _logger.debug("POST %s %s", url, form)
        timeout = aiohttp.ClientTimeout(total=self._config.send_timeout)
        try:
            async with self._http.post(url, data=form, headers={"user-agent": USER_AGENT}, timeout=timeout) as resp:
                if resp.status >= 300:
                    _logger.info("POST %s rejected with HTTP %s", path, resp.status)
                    return False
                return True
        except (aiohttp.ClientError, TimeoutError):
            _logger.info("POST %s failed", path, exc_info=True)
            return False

    async def fetch_snapshots(self, source: Source) -> list[SourceSnapshot]:
        path = self._LIST_PATHS[source]
        payload = await self._get_json(path, source=source.value)
        if not isinstance(payload, list):
            raise FetchFailure(f"Expected a list from {path}", source=source.value)

        snapshots: list[SourceSnapshot] = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            try:
                snapshots.append(SourceSnapshot.model_validate(item))
            except ValidationError:
                _logger.debug("Skipping unparsable %s snapshot: %s", source.value, item, exc_info=True)
        return snapshots

    async def device_name(self, oid: str) -> str | None:
        payload = await self._get_json(THINGS_PATH, source="directory")
        if not isinstance(payload, list):
            raise FetchFailure(f"Expected a list from {THINGS_PATH}", source="directory")
        for item in payload:
            if isinstance(item, dict) and str(item.get("oid")) == oid:
                name = item.get("name")
                return str(name) if name else None
        return None

    async def send_command(self, request: CommandRequest) -> bool:
        """Send to every source that sees the Thing; accepted if any source accepts."""
        if not request.selectors:
            _logger.info("No source currently sees %s; nothing to send", request.oid)
            return False

        accepted = False
        desired = request.desired
        for source, selector in request.selectors.items():
            form = {"use_public": "true" if source == Source.PUBLIC else "false", "selector": selector}
            if desired.power is not None:
                accepted |= await self._post_form(SET_STATE_PATH, {**form, "power": desired.power.value})
            if desired.color is not None and not desired.color.is_empty():
                accepted |= await self._post_form(SET_COLOR_PATH, {**form, "color": desired.color.to_command_string()})
        return accepted
