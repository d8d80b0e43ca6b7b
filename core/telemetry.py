# ABOUTME: Agent-turn telemetry: one structured JSON log line per agent call, plus Gemini cost estimate.
# ABOUTME: Gemini 2.5 Flash pricing: $0.075/1M input, $0.30/1M output (token counts are 0 for the HTTP backend).

import json
from dataclasses import dataclass
from datetime import datetime, timezone


# Gemini 2.5 Flash pricing per 1M tokens (USD)
INPUT_COST_PER_1M = 0.075
OUTPUT_COST_PER_1M = 0.30


def estimate_cost_usd(prompt_tokens: int, completion_tokens: int) -> float:
    """Estimate cost in USD for Gemini 2.5 Flash."""
    return (prompt_tokens / 1_000_000) * INPUT_COST_PER_1M + (
        completion_tokens / 1_000_000
    ) * OUTPUT_COST_PER_1M


@dataclass
class TelemetryLogEntry:
    """Structured telemetry entry for one agent call."""

    timestamp: str
    backend: str
    session_id: str
    latency_ms: float
    action_type: str | None
    prompt_tokens: int
    completion_tokens: int
    estimated_cost_usd: float
    success: bool

    def to_json(self) -> str:
        return json.dumps(
            {
                "timestamp": self.timestamp,
                "event": "agent_call",
                "backend": self.backend,
                "session_id": self.session_id,
                "latency_ms": round(self.latency_ms, 2),
                "action_type": self.action_type,
                "prompt_tokens": self.prompt_tokens,
                "completion_tokens": self.completion_tokens,
                "estimated_cost_usd": f"{self.estimated_cost_usd:.6f}",
                "success": self.success,
            }
        )


def log_agent_call(
    *,
    backend: str,
    session_id: str,
    latency_ms: float,
    action_type: str | None,
    success: bool,
    prompt_tokens: int = 0,
    completion_tokens: int = 0,
) -> None:
    """Print a structured JSON log line to stdout for one agent call."""
    entry = TelemetryLogEntry(
        timestamp=datetime.now(tz=timezone.utc).isoformat(),
        backend=backend,
        session_id=session_id,
        latency_ms=latency_ms,
        action_type=action_type,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        estimated_cost_usd=estimate_cost_usd(prompt_tokens, completion_tokens),
        success=success,
    )
    print(entry.to_json(), flush=True)
