from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class AuditEvent(BaseModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    agent_id: str = ""
    action: str = ""            # e.g. "auth", "purchase.intent", "settlement.update"
    resource: str = ""          # listing / transaction id
    outcome: str = ""
    correlation_id: str = ""
    detail: dict[str, Any] = Field(default_factory=dict)


class AuditLogger:
    """Append-only JSON-lines trail of authentication and money movements."""

    def __init__(self, log_path: str | Path) -> None:
        self._path = Path(log_path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _serialize(self, event: AuditEvent) -> str:
        return json.dumps({
            "timestamp": event.timestamp.isoformat(),
            "agent_id": event.agent_id,
            "action": event.action,
            "resource": event.resource,
            "outcome": event.outcome,
            "correlation_id": event.correlation_id,
            "detail": event.detail,
        }, default=str) + "\n"

    async def log(self, event: AuditEvent) -> None:
        line = self._serialize(event)

        def _write():
            with open(self._path, "a") as f:
                f.write(line)

        async with self._lock:
            await asyncio.to_thread(_write)

    async def record(self, action: str, outcome: str, **fields: Any) -> None:
        detail = fields.pop("detail", {})
        await self.log(AuditEvent(action=action, outcome=outcome, detail=detail, **fields))

    def read(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        with open(self._path) as f:
            return [json.loads(line) for line in f if line.strip()]
