"""
Order lifecycle graph.

    pending -> confirmed -> processing -> shipped -> delivered
       \           \            \
        +-----------+------------+--> cancelled --> refunded
"""
from .errors import InvalidTransition

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded")

FULFILMENT_PATH = ("pending", "confirmed", "processing", "shipped", "delivered")

CANCELLABLE_STATUSES = frozenset({"pending", "confirmed", "processing"})

_VALID_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": {"refunded"},
    "refunded": set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in _VALID_TRANSITIONS.get(current, set())


def assert_can_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(f"Cannot transition order from '{current}' to '{target}'")


def is_cancellable(status: str) -> bool:
    return status in CANCELLABLE_STATUSES


def path_to(current: str, target: str) -> list[str]:
    """Statuses to walk through, in order, to reach `target` along the
    fulfilment path. Empty when `target` is not ahead of `current`."""
    if current not in FULFILMENT_PATH or target not in FULFILMENT_PATH:
        return []
    start, end = FULFILMENT_PATH.index(current), FULFILMENT_PATH.index(target)
    if end <= start:
        return []
    return list(FULFILMENT_PATH[start + 1:end + 1])


def is_valid_history(statuses: list[str]) -> bool:
    """True when `statuses` starts at pending and only follows graph edges."""
    if not statuses or statuses[0] != "pending":
        return False
    return all(can_transition(a, b) for a, b in zip(statuses, statuses[1:]))
