"""Query and format indicator mirror status from Redis.

Reads the vectors a running screener mirrors to Redis and returns structured status
information for display by the CLI status command.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone

import redis.asyncio as aioredis  # type: ignore
from redis.exceptions import RedisError  # type: ignore

from screener.processors.redis import INDICATOR_KEY_PATTERN


@dataclass
class MirroredVector:
    """Parsed indicator vector entry from Redis."""

    symbol: str
    price: float | None
    change_percent: float | None
    rsi14: float | None
    updated_at: datetime | None
    ttl_seconds: int | None = None

    @property
    def age_seconds(self) -> float | None:
        """Seconds since the vector was computed, or None if unknown."""
        if self.updated_at is None:
            return None
        delta = datetime.now(timezone.utc) - self.updated_at
        return delta.total_seconds()

    @property
    def age_display(self) -> str:
        """Human-readable age string."""
        age = self.age_seconds
        if age is None:
            return "unknown"
        if age < 60:
            return f"{age:.0f}s ago"
        if age < 3600:
            return f"{age / 60:.0f}m ago"
        if age < 86400:
            return f"{age / 3600:.1f}h ago"
        return f"{age / 86400:.1f}d ago"


@dataclass
class StatusResult:
    """Aggregated mirror status."""

    redis_connected: bool = False
    redis_version: str = ""
    vectors: list[MirroredVector] = field(default_factory=list)
    error: str | None = None

    @property
    def stale_vectors(self) -> list[MirroredVector]:
        """Vectors older than two minutes, a sign the refresh cycle is behind."""
        return [v for v in self.vectors if v.age_seconds is None or v.age_seconds > 120]


def _parse_vector(key: str, raw: dict) -> MirroredVector:
    """Parse a raw mirrored vector."""
    updated_at = None
    if (ts := raw.get("updatedAt")) is not None:
        try:
            updated_at = datetime.fromtimestamp(int(ts) / 1000, tz=timezone.utc)
        except (ValueError, TypeError, OverflowError):
            pass

    return MirroredVector(
        symbol=raw.get("symbol") or key.split(":", 1)[-1],
        price=raw.get("price"),
        change_percent=raw.get("changePercent"),
        rsi14=raw.get("rsi14"),
        updated_at=updated_at,
    )


async def query_status(redis_url: str = "redis://redis:6379/0") -> StatusResult:
    """Query Redis for mirrored indicator vectors.

    Args:
        redis_url: Redis connection URL.

    Returns:
        StatusResult with connection info and mirrored vectors.
    """
    result = StatusResult()

    client = aioredis.from_url(redis_url)
    try:
        await asyncio.wait_for(client.ping(), timeout=5.0)
        result.redis_connected = True

        info = await client.info("server")
        result.redis_version = info.get("redis_version", "unknown")

        async for key_bytes in client.scan_iter(match=INDICATOR_KEY_PATTERN):
            key = key_bytes.decode("utf-8") if isinstance(key_bytes, bytes) else key_bytes
            raw = await client.get(key)
            if raw is None:
                continue
            try:
                payload = json.loads(raw)
            except ValueError:
                continue
            vector = _parse_vector(key, payload)
            vector.ttl_seconds = await client.ttl(key)
            result.vectors.append(vector)

        result.vectors.sort(key=lambda v: v.symbol)

    except (RedisError, OSError, asyncio.TimeoutError) as e:
        result.error = f"Cannot connect to Redis at {redis_url}: {e}"
    finally:
        await client.aclose()

    return result


def format_status(result: StatusResult, as_json: bool = False) -> str:
    """Format StatusResult for terminal display.

    Args:
        result: The query result to format.
        as_json: If True, return JSON output instead of table.
    """
    if as_json:
        return _format_json(result)
    return _format_table(result)


def _format_json(result: StatusResult) -> str:
    data: dict[str, object] = {
        "redis": {
            "connected": result.redis_connected,
            "version": result.redis_version,
        },
        "indicators": {
            "total": len(result.vectors),
            "stale": len(result.stale_vectors),
            "symbols": [
                {
                    "symbol": v.symbol,
                    "price": v.price,
                    "changePercent": v.change_percent,
                    "rsi14": v.rsi14,
                    "updatedAt": v.updated_at.isoformat() if v.updated_at else None,
                    "age": v.age_display,
                    "ttl": v.ttl_seconds,
                }
                for v in result.vectors
            ],
        },
    }
    if result.error:
        data["error"] = result.error
    return json.dumps(data, indent=2)


def _format_number(value: float | None, spec: str) -> str:
    return "-" if value is None else format(value, spec)


def _format_table(result: StatusResult) -> str:
    lines: list[str] = []

    lines.append("Connection Health")
    lines.append("-" * 40)
    redis_status = "Connected" if result.redis_connected else "Disconnected"
    if result.redis_connected:
        redis_status += f" (v{result.redis_version})"
    lines.append(f"  Redis:    {redis_status}")

    if result.error:
        lines.append(f"  Error:    {result.error}")
        return "\n".join(lines)

    if not result.vectors:
        lines.append("")
        lines.append("No mirrored indicators")
        return "\n".join(lines)

    lines.append("")
    lines.append(f"Mirrored Indicators: {len(result.vectors)} ({len(result.stale_vectors)} stale)")
    lines.append("-" * 40)
    for v in result.vectors:
        lines.append(
            f"  {v.symbol:<10s} {_format_number(v.price, '>10.2f')} "
            f"{_format_number(v.change_percent, '>+7.2f')}% "
            f"rsi {_format_number(v.rsi14, '>5.1f')}  {v.age_display}"
        )

    return "\n".join(lines)
