"""
Destination (channel) cache and the tabular decoder that feeds it.

The Slack MCP upstream answers `slack_channels_list` with a small CSV-like
table:

    ID,Name,Topic,Purpose,MemberCount
    C01,general,Company wide,,42
    C02,random,,,17

Grammar: newline separated rows; the first non-empty row is the header; every
following row is split on commas and zipped positionally against the header.
There is no quoting, so an embedded comma shifts the remaining columns.
Rows shorter than the header leave the trailing columns as None.
"""

import json
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping

from .errors import MalformedCacheData

logger = logging.getLogger(__name__)

HEADER_SIGNATURE = "ID,"

Record = dict[str, str | None]
Invoker = Callable[[str, dict[str, Any]], Awaitable[Any]]


def is_tabular(text: str) -> bool:
    """A blob is tabular if it starts with the header signature or spans several lines."""
    return text.startswith(HEADER_SIGNATURE) or "\n" in text


def parse_tabular(text: str) -> list[Record]:
    """
    Decode a header row plus data rows into records.

    Raises:
        MalformedCacheData: If the text does not look tabular
    """
    if not is_tabular(text):
        raise MalformedCacheData(f"not a tabular listing: {text[:200]!r}")

    lines = [line.strip() for line in text.split("\n")]
    lines = [line for line in lines if line]
    if not lines:
        return []

    headers = [h.strip() for h in lines[0].split(",")]
    records: list[Record] = []
    for line in lines[1:]:
        values = [v.strip() for v in line.split(",")]
        records.append({
            header: (values[i] if i < len(values) else None)
            for i, header in enumerate(headers)
        })
    return records


def decode_destinations(text: str) -> list[Record] | None:
    """
    Decode a channel listing.

    Returns:
        None when the listing is empty (leave the cache alone), else the records

    Raises:
        MalformedCacheData: If the listing is not tabular
    """
    text = (text or "").strip()
    if not text:
        return None
    return parse_tabular(text)


def extract_text(response: Any) -> str:
    """
    Flatten a tool result into text.

    Handles plain strings, MCP results with a `content` list of text items,
    objects carrying a `result` field, and falls back to a JSON dump.
    """
    if response is None:
        return ""
    if isinstance(response, str):
        return response.strip()
    if isinstance(response, Mapping):
        content = response.get("content")
        if isinstance(content, list):
            parts = [
                item["text"] for item in content
                if isinstance(item, Mapping) and isinstance(item.get("text"), str) and item["text"]
            ]
            return "\n".join(parts).strip()
        if response.get("result"):
            return str(response["result"]).strip()
        return json.dumps(response).strip()
    return str(response).strip()


@dataclass(frozen=True)
class Destination:
    """A named place messages can be sent to (a channel, DM or group DM)."""

    id: str
    name: str | None
    fields: Mapping[str, str | None] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Record) -> "Destination | None":
        if not record:
            return None
        # First column is the identifier by convention
        id_column = next(iter(record))
        dest_id = record.get(id_column)
        if not dest_id:
            return None
        name = next((v for k, v in record.items() if k.lower() == "name"), None)
        return cls(id=dest_id, name=name, fields=MappingProxyType(dict(record)))

    def get(self, column: str, default: Any = None) -> Any:
        return self.fields.get(column, default)


class DestinationCache:
    """
    Channels known to the agent, keyed by id.

    Each refresh rebuilds the whole collection, so a channel removed upstream
    disappears after the next cycle.
    """

    def __init__(
        self,
        invoke: Invoker | None,
        list_tool: str = "slack_channels_list",
        list_input: Mapping[str, Any] | None = None,
    ):
        self._invoke = invoke
        self.list_tool = list_tool
        self.list_input = dict(list_input or {
            "channel_types": "public_channel,private_channel,im,mpim",
            "limit": 999,
        })
        self._destinations: Mapping[str, Destination] = MappingProxyType({})

    async def refresh(self) -> int:
        """
        Fetch and decode the channel listing.

        Empty or non-tabular listings are logged and leave the cache as it
        was. Invocation errors propagate to the caller.

        Returns:
            Number of cached destinations after the refresh
        """
        if self._invoke is None:
            logger.info("Slack ability not loaded; cannot preload channels.")
            return len(self._destinations)

        logger.info("Fetching channels from Slack MCP...")
        response = await self._invoke(self.list_tool, dict(self.list_input))
        if not response:
            logger.info("Channel fetch returned no result.")
            return len(self._destinations)

        raw = extract_text(response)
        try:
            records = decode_destinations(raw)
        except MalformedCacheData:
            logger.info("%s returned non-CSV data: %s", self.list_tool, raw[:500])
            return len(self._destinations)

        if records is None:
            logger.info("Channel listing was empty; keeping %d cached channels", len(self._destinations))
            return len(self._destinations)

        self.replace_records(records)
        logger.info("Cached %d Slack channels:", len(self._destinations))
        for dest in self._destinations.values():
            logger.info("  - %s: %s", dest.id, dest.name)
        return len(self._destinations)

    def replace_records(self, records: Iterable[Record]) -> None:
        """Swap in a freshly decoded listing in one step."""
        destinations: dict[str, Destination] = {}
        for record in records:
            dest = Destination.from_record(record)
            if dest is not None:
                destinations[dest.id] = dest
        self._destinations = MappingProxyType(destinations)

    def get(self, dest_id: str) -> Destination | None:
        return self._destinations.get(dest_id)

    def find_by_name(self, name: str) -> Destination | None:
        """Look up a channel by name, ignoring case and a leading '#'."""
        wanted = name.strip().lstrip("#").lower()
        for dest in self._destinations.values():
            if dest.name and dest.name.lstrip("#").lower() == wanted:
                return dest
        return None

    def snapshot(self) -> tuple[Destination, ...]:
        return tuple(self._destinations.values())

    def __contains__(self, dest_id: object) -> bool:
        return dest_id in self._destinations

    def __len__(self) -> int:
        return len(self._destinations)
