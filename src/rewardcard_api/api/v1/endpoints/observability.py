"""Observability endpoints for stamp issuance and billing reconciliation counters."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from rewardcard_api.api.dependencies.security import require_operator_api_key
from rewardcard_api.observability.loyalty import get_loyalty_store


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_operator_api_key)],
)


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} counter",
        f"{name}{label_fragment} {value}",
    ]


@router.get("/loyalty", summary="Loyalty observability snapshot")
async def get_loyalty_snapshot() -> dict[str, object]:
    return get_loyalty_store().snapshot().as_dict()


@router.get(
    "/prometheus",
    summary="Prometheus-formatted observability metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_loyalty_store().snapshot()
    lines: list[str] = []

    for key, value in sorted(snapshot.stamps.items()):
        lines.extend(
            _format_metric("rewardcard_stamps_total", "Stamp issuance events grouped by kind", value, labels={"kind": key})
        )
    for key, value in sorted(snapshot.cards.items()):
        lines.extend(
            _format_metric("rewardcard_cards_total", "Stamp card creation events grouped by kind", value, labels={"kind": key})
        )
    for code, value in sorted(snapshot.rejections.items()):
        lines.extend(
            _format_metric("rewardcard_rejections_total", "Rejected scans grouped by error code", value, labels={"code": code})
        )
    for event_type, value in sorted(snapshot.billing_events.get("by_type", {}).items()):
        lines.extend(
            _format_metric(
                "rewardcard_billing_events_total",
                "Stripe webhook deliveries grouped by event type",
                value,
                labels={"event_type": event_type},
            )
        )
    for outcome, value in sorted(snapshot.billing_events.get("by_outcome", {}).items()):
        lines.extend(
            _format_metric(
                "rewardcard_billing_outcomes_total",
                "Stripe webhook deliveries grouped by reconciliation outcome",
                value,
                labels={"outcome": outcome},
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n")
