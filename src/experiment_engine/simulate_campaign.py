"""
Outreach Campaign Simulator.

Assigns synthetic prospects to variants via the assignment module and
simulates each prospect's funnel from per-variant true rates:
- opened given sent
- clicked and replied given opened
- converted given replied
- unsubscribed given sent

Writes every ExperimentEvent to the ledger in one batch. Returns run summary.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import numpy as np

from .assignment import assign_for_config
from .event_store import EventLedger
from .exceptions import InvalidArgument
from .schema import EventType, ExperimentConfig, ExperimentEvent

logger = logging.getLogger(__name__)

SIMULATOR_SEED = 42


@dataclass(frozen=True)
class FunnelRates:
    """Conditional step probabilities for one variant."""
    open: float = 0.45
    click: float = 0.10  # given opened
    reply: float = 0.12  # given opened
    convert: float = 0.30  # given replied
    unsubscribe: float = 0.01

    def __post_init__(self):
        for name in ("open", "click", "reply", "convert", "unsubscribe"):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise InvalidArgument(f"{name} rate must be in [0, 1], got {value}")


def simulate_outreach(
    ledger: EventLedger,
    config: ExperimentConfig,
    true_rates: Dict[str, FunnelRates],
    n_participants: int = 2000,
    days: int = 14,
    start: Optional[datetime] = None,
    sequence_id: str = "seq_sim",
    random_seed: int = SIMULATOR_SEED,
) -> Dict:
    """
    Run an outreach simulation into the ledger.

    Args:
        ledger: Ledger receiving the events
        config: Test configuration (variants, weights)
        true_rates: Mapping variant_id -> FunnelRates (missing variants use defaults)
        n_participants: Number of synthetic prospects
        days: Sends are spread uniformly over this many days
        start: First send day (default: ``days`` days before now, UTC midnight)
        sequence_id: Outreach sequence id stamped on every event
        random_seed: Random seed for reproducibility

    Returns:
        Dict with n_participants, per-variant assignment counts, events_written
    """
    if n_participants < 0 or days < 1:
        raise InvalidArgument("n_participants must be >= 0 and days >= 1")
    rng = np.random.default_rng(random_seed)
    if start is None:
        today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        start = today - timedelta(days=days)

    events = []
    assigned = Counter()

    def emit(pid, variant, event_type, at):
        events.append(ExperimentEvent(
            test_id=config.test_id,
            variant_id=variant,
            participant_id=pid,
            event_type=event_type,
            sequence_id=sequence_id,
            created_at=at,
            metadata={"simulated": True},
        ))

    for i in range(n_participants):
        pid = f"prospect-{i:06d}"
        variant = assign_for_config(pid, config)
        assigned[variant] += 1
        rates = true_rates.get(variant, FunnelRates())

        sent_at = start + timedelta(
            days=int(rng.integers(days)), seconds=int(rng.integers(86_400))
        )
        emit(pid, variant, EventType.SENT, sent_at)

        if rng.random() < rates.unsubscribe:
            emit(pid, variant, EventType.UNSUBSCRIBED, sent_at + timedelta(minutes=5))
            continue
        if rng.random() >= rates.open:
            continue
        opened_at = sent_at + timedelta(minutes=int(rng.integers(1, 240)))
        emit(pid, variant, EventType.OPENED, opened_at)

        if rng.random() < rates.click:
            emit(pid, variant, EventType.CLICKED, opened_at + timedelta(minutes=1))
        if rng.random() < rates.reply:
            replied_at = opened_at + timedelta(minutes=int(rng.integers(5, 600)))
            emit(pid, variant, EventType.REPLIED, replied_at)
            if rng.random() < rates.convert:
                emit(pid, variant, EventType.CONVERTED, replied_at + timedelta(minutes=30))

    # Record in event-time order
    events.sort(key=lambda e: e.created_at)
    written = ledger.record_batch(events)

    summary = {
        "test_id": config.test_id,
        "n_participants": n_participants,
        "assigned": {v: assigned.get(v, 0) for v in config.variants},
        "events_written": written,
        "random_seed": random_seed,
    }
    logger.info(f"Simulation complete: {summary}")
    return summary
