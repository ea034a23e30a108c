"""Discord REST client."""

from .client import DiscordClient, parse_snowflake  # noqa: F401
