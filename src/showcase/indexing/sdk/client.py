from __future__ import annotations

from typing import Any, Dict, List, Mapping

import httpx
from pydantic import ValidationError

from shared.logging import get_logger

from ..config import IndexingSettings, get_settings
from ..errors import ConfigurationError, DiscordApiError, RateLimitedError
from ..models.contracts import Message, SerializableChannel, SerializableGuild

logger = get_logger("indexing.discord")

MAX_PAGE_SIZE = 100
CHANNEL_TYPE_TEXT = 0
CHANNEL_TYPE_CATEGORY = 4
_U64_MAX = 2**64 - 1


def parse_snowflake(value: str, *, kind: str = "Channel") -> int:
    """Parse a string-encoded unsigned 64-bit Discord id."""
    cleaned = (value or "").strip()
    if not cleaned.isdigit() or int(cleaned) > _U64_MAX:
        raise ConfigurationError(f"Invalid {kind} ID format provided: '{value}'")
    return int(cleaned)


def sort_oldest_first(messages: List[Message]) -> List[Message]:
    return sorted(messages, key=lambda msg: (msg.timestamp, msg.snowflake))


def _retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


class DiscordClient:
    """Thin async client for the parts of the Discord REST API the indexer uses."""

    def __init__(
        self,
        settings: IndexingSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        authorization = self._settings.authorization_header
        if authorization is None:
            raise ConfigurationError("Discord Bot Token not found. Please save it first.")
        self._base_url = self._settings.discord_api_base.rstrip("/")
        self._headers = {
            "Authorization": authorization,
            "Accept": "application/json",
            "User-Agent": "showcase-indexer",
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))

    async def __aenter__(self) -> "DiscordClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.aclose()
        return False

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.get(url, params=params, headers=self._headers)
        except httpx.HTTPError as exc:
            logger.error("discord_request_failed", path=path, error=str(exc))
            raise DiscordApiError(f"Request to {path} failed: {exc}") from exc

        if response.status_code == 429:
            retry_after = _retry_after(response)
            logger.warning("discord_rate_limited", path=path, retry_after=retry_after)
            raise RateLimitedError(f"Rate limited on {path}", retry_after=retry_after)
        if response.is_error:
            logger.error(
                "discord_request_rejected",
                path=path,
                status_code=response.status_code,
                body=response.text[:256],
            )
            raise DiscordApiError(
                f"Discord API returned {response.status_code} for {path}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise DiscordApiError(f"Discord API returned invalid JSON for {path}") from exc

    async def fetch_page(
        self,
        channel_id: str,
        before: str | None = None,
        *,
        limit: int | None = None,
    ) -> List[Message]:
        """Fetch up to ``limit`` messages strictly older than ``before``.

        Omitting ``before`` returns the newest page. The result is sorted
        oldest-first; an empty list means the history is exhausted.
        """
        page_size = min(limit or self._settings.page_size, MAX_PAGE_SIZE)
        params: Dict[str, Any] = {"limit": page_size}
        if before is not None:
            params["before"] = before
        payload = await self._get(f"/channels/{channel_id}/messages", params)
        if not isinstance(payload, list):
            raise DiscordApiError(f"Unexpected message payload for channel {channel_id}")
        try:
            messages = [Message.from_api(item) for item in payload]
        except (ValidationError, KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.error("discord_page_malformed", channel_id=channel_id, before=before, error=str(exc))
            raise DiscordApiError(f"Unexpected message payload for channel {channel_id}: {exc}") from exc
        logger.debug("discord_page_fetched", channel_id=channel_id, before=before, count=len(messages))
        return sort_oldest_first(messages)

    async def list_guilds(self) -> List[SerializableGuild]:
        try:
            payload = await self._get("/users/@me/guilds")
        except DiscordApiError as exc:
            if exc.status_code == 401:
                raise DiscordApiError(
                    "Discord API Error: Invalid Token (Unauthorized). Please check the saved token.",
                    status_code=401,
                ) from exc
            raise
        guilds = [
            SerializableGuild(id=item["id"], name=item.get("name", ""), icon=item.get("icon"))
            for item in payload
        ]
        logger.info("discord_guilds_fetched", count=len(guilds))
        return guilds

    async def list_channels(self, guild_id: str) -> List[SerializableChannel]:
        """Text channels of a guild, annotated with their category, by position."""
        parse_snowflake(guild_id, kind="Guild")
        try:
            payload = await self._get(f"/guilds/{guild_id.strip()}/channels")
        except DiscordApiError as exc:
            messages = {
                401: "Discord API Error: Invalid Token (Unauthorized).",
                403: f"Discord API Error: Missing permissions to view channels in guild {guild_id}.",
                404: f"Discord API Error: Guild not found (ID: {guild_id}).",
            }
            if exc.status_code in messages:
                raise DiscordApiError(messages[exc.status_code], status_code=exc.status_code) from exc
            raise

        category_names = {
            str(item["id"]): item.get("name", "")
            for item in payload
            if item.get("type") == CHANNEL_TYPE_CATEGORY
        }
        channels = []
        for item in payload:
            if item.get("type") != CHANNEL_TYPE_TEXT:
                continue
            parent_id = item.get("parent_id")
            channels.append(
                SerializableChannel(
                    id=item["id"],
                    name=item.get("name", ""),
                    topic=item.get("topic"),
                    position=item.get("position", 0),
                    parent_id=parent_id,
                    parent_name=category_names.get(str(parent_id)) if parent_id else None,
                )
            )
        channels.sort(key=lambda channel: channel.position)
        logger.info("discord_channels_fetched", guild_id=guild_id, count=len(channels))
        return channels


__all__ = ["DiscordClient", "MAX_PAGE_SIZE", "parse_snowflake", "sort_oldest_first"]
