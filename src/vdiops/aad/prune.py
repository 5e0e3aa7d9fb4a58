"""
Pruning of stale and duplicate Azure AD device records.

Every reset of a non-persistent desktop registers a new device object under
the same display name, so the directory fills up with duplicates. For each
display name the most recently active record is kept; the others are
duplicates. A kept record that has not signed in for ``stale_days`` is
stale and removed as well.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from vdiops.aad.graph import Device, GraphClient

logger = logging.getLogger(__name__)

OLDEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class PrunePlan:
    duplicates: List[Device] = field(default_factory=list)
    stale: List[Device] = field(default_factory=list)
    kept: List[Device] = field(default_factory=list)

    @property
    def deletions(self) -> List[Device]:
        return self.duplicates + self.stale

    def to_dict(self) -> Dict[str, List[dict]]:
        def dump(devices):
            return [d.model_dump(mode="json", by_alias=True) for d in devices]
        return {
            "duplicates": dump(self.duplicates),
            "stale": dump(self.stale),
            "kept": dump(self.kept),
        }


def _activity(device: Device) -> datetime:
    moment = device.last_activity
    if moment is None:
        return OLDEST
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def plan_prune(devices: List[Device], now: Optional[datetime] = None, stale_days: int = 30) -> PrunePlan:
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=stale_days)

    groups: Dict[str, List[Device]] = {}
    for device in devices:
        groups.setdefault(device.display_name.lower(), []).append(device)

    plan = PrunePlan()
    for name in sorted(groups):
        ordered = sorted(groups[name], key=_activity, reverse=True)
        newest, older = ordered[0], ordered[1:]
        plan.duplicates.extend(older)

        # A device without any timestamp is only removed as a duplicate
        if newest.last_activity is not None and _activity(newest) < cutoff:
            plan.stale.append(newest)
        else:
            plan.kept.append(newest)
    return plan


def prune(client: GraphClient, plan: PrunePlan, apply: bool = False) -> List[Device]:
    """
    Delete the devices in ``plan``. Without ``apply`` only logs what would go.

    Returns:
        The devices deleted (or that would have been deleted)
    """
    removed = []
    for device in plan.deletions:
        reason = "duplicate" if device in plan.duplicates else "stale"
        if apply:
            client.delete_device(device.id)
        else:
            logger.info(f"Would delete {reason} device {device.display_name} ({device.id})")
        removed.append(device)
    verb = "Deleted" if apply else "Dry run, would delete"
    logger.info(f"{verb} {len(removed)} devices ({len(plan.duplicates)} duplicate, {len(plan.stale)} stale)")
    return removed


def write_report(plan: PrunePlan, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(plan.to_dict(), f, indent=2)
    logger.info(f"Prune report written to {path}")
