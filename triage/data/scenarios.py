"""Incident scenarios producing correlated logs across a ticketing platform.

The platform is four services (``orders``, ``payments``, ``tickets``,
``expiration``) talking over a message bus. Each scenario seeds a
``random.Random`` so the same seed always yields the same log set.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel

from triage.core.models import Log

SERVICES = ["orders", "payments", "tickets", "expiration"]


class ScenarioData(BaseModel):
    scenario_name: str
    question: str
    incident_time: datetime
    services: list[str]
    logs: list[Log]


# ── Helpers ──────────────────────────────────────────────────────


def _ts(base: datetime, delta_minutes: float) -> datetime:
    return base + timedelta(minutes=delta_minutes)


def _id(rng: random.Random, prefix: str) -> str:
    return f"{prefix}_{rng.getrandbits(48):012x}"


def _background_traffic(rng: random.Random, window_start: datetime, minutes: int) -> list[Log]:
    """Healthy request flow through every service over the window."""
    logs: list[Log] = []
    for _ in range(rng.randint(30, 45)):
        t = _ts(window_start, rng.uniform(0, minutes))
        order_id = _id(rng, "ord")
        ticket_id = _id(rng, "tkt")
        logs.extend(
            [
                Log(
                    timestamp=t,
                    service="orders",
                    message=f"Order created order_id={order_id} ticket_id={ticket_id}",
                    attributes={"order_id": order_id, "ticket_id": ticket_id},
                ),
                Log(
                    timestamp=t + timedelta(milliseconds=rng.randint(20, 80)),
                    service="tickets",
                    message=f"Ticket reserved ticket_id={ticket_id} order_id={order_id}",
                    attributes={"order_id": order_id, "ticket_id": ticket_id},
                ),
                Log(
                    timestamp=t + timedelta(milliseconds=rng.randint(100, 400)),
                    service="payments",
                    message=f"Charge succeeded order_id={order_id}",
                    attributes={"order_id": order_id},
                ),
            ]
        )
    for _ in range(rng.randint(5, 10)):
        logs.append(
            Log(
                timestamp=_ts(window_start, rng.uniform(0, minutes)),
                service=rng.choice(SERVICES),
                level="debug",
                message="GET /health 200",
            )
        )
    return logs


# ── Base Scenario ────────────────────────────────────────────────


class BaseScenario(ABC):
    name: str

    @abstractmethod
    def generate(self, seed: int = 42, incident_time: Optional[datetime] = None) -> ScenarioData:
        ...


# ── 1. Expiration Queue Stall ───────────────────────────────────


class ExpirationQueueStallScenario(BaseScenario):
    """Expiration worker stops acking jobs; reserved tickets are never released.

    Story: a config rollout pointed the expiration worker at a renamed queue.
    Orders keep reserving tickets, expiration jobs are enqueued but never
    processed, and after the reservation window users see "ticket already
    reserved" on every retry.
    """

    name = "expiration_queue_stall"

    def generate(self, seed: int = 42, incident_time: Optional[datetime] = None) -> ScenarioData:
        rng = random.Random(seed)
        now = incident_time or datetime.now(timezone.utc)
        window_start = _ts(now, -40)

        logs = _background_traffic(rng, window_start, 35)

        logs.append(
            Log(
                timestamp=_ts(now, -25),
                service="expiration",
                message="Worker started, consuming from queue=order:expiration-v2",
                attributes={"queue": "order:expiration-v2"},
            )
        )

        stuck_tickets = []
        for _ in range(rng.randint(8, 14)):
            t = _ts(now, rng.uniform(-24, -5))
            order_id = _id(rng, "ord")
            ticket_id = _id(rng, "tkt")
            stuck_tickets.append(ticket_id)
            logs.append(
                Log(
                    timestamp=t,
                    service="orders",
                    message=(
                        f"Enqueued expiration job order_id={order_id} ticket_id={ticket_id} "
                        "queue=order:expiration delay_ms=900000"
                    ),
                    attributes={"order_id": order_id, "ticket_id": ticket_id, "queue": "order:expiration"},
                )
            )

        for _ in range(rng.randint(4, 7)):
            logs.append(
                Log(
                    timestamp=_ts(now, rng.uniform(-20, 0)),
                    service="expiration",
                    level="warn",
                    message="No jobs received in 300s on queue=order:expiration-v2",
                    attributes={"queue": "order:expiration-v2"},
                )
            )

        for ticket_id in stuck_tickets:
            logs.append(
                Log(
                    timestamp=_ts(now, rng.uniform(-2, 3)),
                    service="tickets",
                    level="error",
                    message=f"Cannot reserve ticket_id={ticket_id}: ticket already reserved",
                    attributes={"ticket_id": ticket_id, "status_code": 409},
                )
            )

        logs.sort(key=lambda x: x.timestamp)
        return ScenarioData(
            scenario_name=self.name,
            question=(
                f"Users report that tickets stay reserved forever since about "
                f"{now.strftime('%H:%M')} UTC. Why are reservations not expiring?"
            ),
            incident_time=now,
            services=SERVICES,
            logs=logs,
        )


# ── 2. Payment Provider Timeout ─────────────────────────────────


class PaymentTimeoutScenario(BaseScenario):
    """Payment provider latency exceeds the client timeout; orders are cancelled."""

    name = "payment_timeout"

    def generate(self, seed: int = 42, incident_time: Optional[datetime] = None) -> ScenarioData:
        rng = random.Random(seed)
        now = incident_time or datetime.now(timezone.utc)
        window_start = _ts(now, -40)

        logs = _background_traffic(rng, window_start, 30)

        for _ in range(rng.randint(15, 25)):
            t = _ts(now, rng.uniform(-8, 4))
            order_id = _id(rng, "ord")
            latency = rng.randint(5100, 9000)
            logs.extend(
                [
                    Log(
                        timestamp=t,
                        service="payments",
                        level="error",
                        message=(
                            f"Stripe charge failed order_id={order_id}: "
                            f"ReadTimeout after 5000ms (provider latency {latency}ms)"
                        ),
                        attributes={"order_id": order_id, "provider": "stripe", "latency_ms": latency},
                    ),
                    Log(
                        timestamp=t + timedelta(seconds=1),
                        service="orders",
                        level="warn",
                        message=f"Payment failed, cancelling order_id={order_id}",
                        attributes={"order_id": order_id},
                    ),
                ]
            )

        logs.append(
            Log(
                timestamp=_ts(now, -9),
                service="payments",
                level="warn",
                message="Circuit breaker half-open for provider=stripe (error rate 41%)",
                attributes={"provider": "stripe"},
            )
        )

        logs.sort(key=lambda x: x.timestamp)
        return ScenarioData(
            scenario_name=self.name,
            question=(
                f"Checkout started cancelling orders around {now.strftime('%H:%M')} UTC. "
                "What is the root cause?"
            ),
            incident_time=now,
            services=SERVICES,
            logs=logs,
        )


# ── Scenario Registry ───────────────────────────────────────────

SCENARIOS: dict[str, BaseScenario] = {
    "expiration_queue_stall": ExpirationQueueStallScenario(),
    "payment_timeout": PaymentTimeoutScenario(),
}


def available_scenarios() -> list[str]:
    return list(SCENARIOS.keys())


def generate(
    scenario_type: str,
    seed: int = 42,
    incident_time: Optional[datetime] = None,
) -> ScenarioData:
    if scenario_type not in SCENARIOS:
        raise ValueError(
            f"Unknown scenario '{scenario_type}'. "
            f"Available: {list(SCENARIOS.keys())}"
        )
    return SCENARIOS[scenario_type].generate(seed=seed, incident_time=incident_time)
