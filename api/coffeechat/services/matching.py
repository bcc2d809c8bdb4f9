from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable

from ..config import SLOT_PREFIX, TIMEZONE_BUCKETS, TOTAL_SLOTS


@dataclass
class ProposedPairing:
    user_a: str
    user_b: str
    user_c: str | None = None
    slot_number: int = 1
    slot_label: str = ""
    needs_coordination: bool = False

    @property
    def members(self) -> list[str]:
        out = [self.user_a, self.user_b]
        if self.user_c:
            out.append(self.user_c)
        return out


@dataclass
class HistoryIndex:
    pairs: set[tuple[str, str]] = field(default_factory=set)
    last_met: dict[tuple[str, str], date] = field(default_factory=dict)

    def has_met(self, user_a: str, user_b: str) -> bool:
        return canonical_pair(user_a, user_b) in self.pairs

    def last_met_on(self, user_a: str, user_b: str) -> date | None:
        return self.last_met.get(canonical_pair(user_a, user_b))


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return tuple(sorted((user_a, user_b)))


def slot_label(number: int, prefix: str = SLOT_PREFIX) -> str:
    return f"{prefix} {number}"


def _as_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def build_history_index(records: Iterable[dict[str, Any]]) -> HistoryIndex:
    index = HistoryIndex()
    for record in records:
        members = [m for m in (record.get("user_a"), record.get("user_b"), record.get("user_c")) if m]
        week_of = _as_date(record["week_of"])
        for i in range(len(members)):
            for j in range(i + 1, len(members)):
                key = canonical_pair(members[i], members[j])
                index.pairs.add(key)
                seen = index.last_met.get(key)
                if seen is None or week_of > seen:
                    index.last_met[key] = week_of
    return index


def pick_partner(user_id: str, candidates: list[str], history: HistoryIndex) -> str:
    """First candidate never met in the window, else the one met longest ago."""
    for candidate in candidates:
        if not history.has_met(user_id, candidate):
            return candidate

    best = candidates[0]
    best_date = history.last_met_on(user_id, best)
    for candidate in candidates[1:]:
        met_on = history.last_met_on(user_id, candidate)
        if met_on is not None and (best_date is None or met_on < best_date):
            best, best_date = candidate, met_on
    return best


def greedy_pairs(pool: list[str], history: HistoryIndex) -> tuple[list[tuple[str, str]], list[str]]:
    """Pair members of an already shuffled pool.

    The member with the fewest never-met partners left goes first, ties
    falling back to pool order, so a member with a single fresh option is
    not starved of it by someone with many. A member who has met everyone
    left is paired with another such member when one exists.
    """
    remaining = list(pool)
    fresh = {
        u: sum(1 for v in remaining if v != u and not history.has_met(u, v))
        for u in remaining
    }
    pairs: list[tuple[str, str]] = []

    def _remove(user_id: str) -> None:
        remaining.remove(user_id)
        fresh.pop(user_id, None)
        for other in remaining:
            if not history.has_met(other, user_id):
                fresh[other] -= 1

    while len(remaining) >= 2:
        first = min(remaining, key=lambda u: fresh[u])
        exhausted = fresh[first] == 0
        _remove(first)
        candidates = remaining
        if exhausted:
            # leave never-met partners to the members who still have some
            candidates = [u for u in remaining if fresh[u] == 0] or remaining
        partner = pick_partner(first, candidates, history)
        _remove(partner)
        pairs.append((first, partner))

    return pairs, remaining


def assign_slots(pairings: list[ProposedPairing], total_slots: int = TOTAL_SLOTS, prefix: str = SLOT_PREFIX) -> list[ProposedPairing]:
    for idx, pairing in enumerate(pairings):
        pairing.slot_number = (idx % total_slots) + 1
        pairing.slot_label = slot_label(pairing.slot_number, prefix)
        pairing.needs_coordination = idx >= total_slots
    return pairings


def match_members(
    eligible: list[dict[str, Any]],
    history_records: Iterable[dict[str, Any]],
    *,
    rng: random.Random | None = None,
    total_slots: int = TOTAL_SLOTS,
    prefix: str = SLOT_PREFIX,
) -> list[ProposedPairing]:
    rng = rng or random.Random()
    history = build_history_index(history_records)

    buckets: dict[str, list[str]] = {bucket: [] for bucket in TIMEZONE_BUCKETS}
    remainders: list[str] = []
    seen: set[str] = set()
    for member in eligible:
        user_id = str(member["user_id"])
        if user_id in seen:
            continue
        seen.add(user_id)
        bucket = member.get("timezone_bucket")
        if bucket in buckets:
            buckets[bucket].append(user_id)
        else:
            # unknown bucket: only the cross-timezone pass can place them
            remainders.append(user_id)

    if len(seen) < 2:
        raise ValueError("matching needs at least 2 eligible members")

    pairings: list[ProposedPairing] = []
    for bucket in TIMEZONE_BUCKETS:
        pool = buckets[bucket]
        rng.shuffle(pool)
        pairs, leftover = greedy_pairs(pool, history)
        pairings.extend(ProposedPairing(user_a=a, user_b=b) for a, b in pairs)
        remainders.extend(leftover)

    pairs, leftover = greedy_pairs(remainders, history)
    pairings.extend(ProposedPairing(user_a=a, user_b=b) for a, b in pairs)

    if leftover:
        host = pairings[rng.randrange(len(pairings))]
        host.user_c = leftover[0]

    return assign_slots(pairings, total_slots=total_slots, prefix=prefix)
