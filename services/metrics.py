from __future__ import annotations

from threading import Lock
from typing import Tuple


_lock = Lock()
_counters: dict[str, dict[Tuple[Tuple[str, str], ...], int]] = {}

_HELP = {
    "http_requests_total": "HTTP requests by matched route and status.",
    "transaction_transitions_total": "Applied transaction status changes.",
    "webhook_events_total": "Provider webhook deliveries.",
    "webhook_conflicts_total": "Webhook outcomes contradicting the stored status.",
    "orders_total": "Order creation attempts by provider and result.",
    "order_replays_total": "Order requests answered from an existing Idempotency-Key row.",
    "dispense_rejections_total": "Device calls rejected by the dispense controller.",
}


def _inc(name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        series = _counters.setdefault(name, {})
        series[key] = int(series.get(key, 0)) + int(value)


def get_counter(name: str, labels: dict[str, str] | None = None) -> int:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        return int(_counters.get(name, {}).get(key, 0))


def reset() -> None:
    with _lock:
        _counters.clear()


def increment_http_requests(route: str, status: int) -> None:
    _inc("http_requests_total", {"route": route, "status": str(status)})


def increment_transition(from_status: str | None, to_status: str, cause: str) -> None:
    # webhook causes carry the provider event name; keep the label set bounded
    cause_label = cause.split(":", 1)[0]
    _inc(
        "transaction_transitions_total",
        {"from": from_status or "none", "to": to_status, "cause": cause_label},
    )


def increment_webhook_event(provider: str, signature_valid: bool, applied: bool) -> None:
    _inc(
        "webhook_events_total",
        {
            "provider": provider,
            "signature_valid": str(signature_valid).lower(),
            "applied": str(applied).lower(),
        },
    )


def increment_webhook_conflict(provider: str, reason: str) -> None:
    _inc("webhook_conflicts_total", {"provider": provider, "reason": reason})


def increment_order_created(provider: str, result: str) -> None:
    _inc("orders_total", {"provider": provider, "result": result})


def increment_order_replay(provider: str) -> None:
    _inc("order_replays_total", {"provider": provider})


def increment_dispense_rejection(operation: str, code: str) -> None:
    _inc("dispense_rejections_total", {"operation": operation, "code": code})


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def render_prometheus() -> str:
    lines: list[str] = []
    with _lock:
        for name, series in sorted(_counters.items()):
            if name in _HELP:
                lines.append(f"# HELP {name} {_HELP[name]}")
            lines.append(f"# TYPE {name} counter")
            for labels, value in sorted(series.items()):
                if labels:
                    label_str = ",".join(f'{k}="{_escape(v)}"' for k, v in labels)
                    lines.append(f"{name}{{{label_str}}} {value}")
                else:
                    lines.append(f"{name} {value}")
    return "\n".join(lines) + ("\n" if lines else "")
