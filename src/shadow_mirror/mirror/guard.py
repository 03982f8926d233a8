"""Anomaly guard: veto a capture whose counts look like data loss.

Compares the primary collection's new count against the last known-good
snapshot.  Blocks a full wipe and any drop below ``drop_ratio`` of the
previous count, unless the previous count was at or below ``wipe_floor``
(too small to tell a bulk delete from an outage).
"""

import logging

from shadow_mirror.config.models import GuardConfig
from shadow_mirror.mirror.models import GuardVerdict

logger = logging.getLogger(__name__)


def evaluate(
    new_counts: dict[str, int],
    last_good_counts: dict[str, int] | None,
    config: GuardConfig | None = None,
) -> GuardVerdict:
    """Decide whether a capture is suspicious and explain why.

    Args:
        new_counts: Per-collection counts of the new capture.
        last_good_counts: Per-collection counts of the last known-good
            snapshot, or ``None`` when there is none.
        config: Thresholds (defaults: primary ``tasks``, ratio 0.5, floor 5).

    Returns:
        GuardVerdict with ``suspicious`` set and both count dicts attached.
    """
    config = config or GuardConfig()
    primary = config.primary_collection
    new = new_counts.get(primary, 0)

    verdict = GuardVerdict(
        suspicious=False,
        previous_counts=last_good_counts,
        new_counts=dict(new_counts),
    )

    if not last_good_counts:
        verdict.reason = "no known-good snapshot to compare against"
        return verdict

    previous = last_good_counts.get(primary, 0)
    if previous == 0:
        verdict.reason = "previous snapshot had no records"
        return verdict

    if previous <= config.wipe_floor:
        verdict.reason = (
            f"previous {primary} count {previous} is at or below floor "
            f"{config.wipe_floor}"
        )
        return verdict

    if new == 0:
        verdict.suspicious = True
        verdict.reason = f"all {previous} {primary} disappeared"
    elif new < previous * config.drop_ratio:
        verdict.suspicious = True
        loss = (1 - new / previous) * 100
        verdict.reason = (
            f"{primary} count dropped from {previous} to {new} "
            f"({loss:.0f}% loss, threshold {(1 - config.drop_ratio) * 100:.0f}%)"
        )
    else:
        verdict.reason = f"{primary} count {previous} -> {new} within threshold"

    if verdict.suspicious:
        logger.warning(f"SUSPICIOUS capture: {verdict.reason}")
    return verdict


def is_suspicious(
    new_counts: dict[str, int],
    last_good_counts: dict[str, int] | None,
    config: GuardConfig | None = None,
) -> bool:
    """Boolean form of ``evaluate``."""
    return evaluate(new_counts, last_good_counts, config).suspicious
