"""
Order status lifecycle.

    NEW_ORDER --ship--> SENT --receive--> RECEIVED --send_back--> SENT_BACK --confirm_return--> RETURNED
        |                                     |                      ^
        +--reject--> REJECTED                 +--mark_overdue--> OVERDUE

Only the transitions in TRANSITIONS exist; REJECTED and RETURNED are terminal.
Each transition names the actor roles allowed to trigger it.
"""
import enum
from dataclasses import dataclass

from shared.errors import InvalidTransitionError

from .models import OrderStatus


class OrderEvent(str, enum.Enum):
    REJECT = "reject"
    SHIP = "ship"
    RECEIVE = "receive"
    MARK_OVERDUE = "mark_overdue"
    SEND_BACK = "send_back"
    CONFIRM_RETURN = "confirm_return"


class Actor(str, enum.Enum):
    BUYER = "buyer"
    VENDOR = "vendor"
    SWEEPER = "sweeper"


@dataclass(frozen=True)
class Transition:
    source: OrderStatus
    event: OrderEvent
    actors: frozenset
    target: OrderStatus


def _t(source, event, actors, target) -> Transition:
    return Transition(source, event, frozenset(actors), target)


TRANSITIONS = {
    (t.source, t.event): t
    for t in (
        _t(OrderStatus.NEW_ORDER, OrderEvent.REJECT, {Actor.BUYER, Actor.VENDOR}, OrderStatus.REJECTED),
        _t(OrderStatus.NEW_ORDER, OrderEvent.SHIP, {Actor.VENDOR}, OrderStatus.SENT),
        _t(OrderStatus.SENT, OrderEvent.RECEIVE, {Actor.BUYER}, OrderStatus.RECEIVED),
        _t(OrderStatus.RECEIVED, OrderEvent.MARK_OVERDUE, {Actor.SWEEPER}, OrderStatus.OVERDUE),
        _t(OrderStatus.RECEIVED, OrderEvent.SEND_BACK, {Actor.BUYER}, OrderStatus.SENT_BACK),
        _t(OrderStatus.OVERDUE, OrderEvent.SEND_BACK, {Actor.BUYER}, OrderStatus.SENT_BACK),
        _t(OrderStatus.SENT_BACK, OrderEvent.CONFIRM_RETURN, {Actor.VENDOR}, OrderStatus.RETURNED),
    )
}

TERMINAL_STATUSES = frozenset({OrderStatus.REJECTED, OrderStatus.RETURNED})

# Statuses reached only after the vendor shipped
SHIPPED_STATUSES = frozenset({
    OrderStatus.SENT,
    OrderStatus.RECEIVED,
    OrderStatus.OVERDUE,
    OrderStatus.SENT_BACK,
    OrderStatus.RETURNED,
})

# Statuses in which the buyer holds the item
IN_BUYER_HANDS = frozenset({OrderStatus.RECEIVED, OrderStatus.OVERDUE, OrderStatus.SENT_BACK, OrderStatus.RETURNED})


def next_status(current: OrderStatus, event: OrderEvent, actor: Actor) -> OrderStatus:
    transition = TRANSITIONS.get((current, event))
    if transition is None:
        raise InvalidTransitionError(f"Cannot {event.value} an order with status '{current.value}'")
    if actor not in transition.actors:
        raise InvalidTransitionError(f"A {actor.value} cannot {event.value} this order")
    return transition.target


def allowed_events(current: OrderStatus, actor: Actor) -> list[OrderEvent]:
    return [
        t.event for t in TRANSITIONS.values()
        if t.source == current and actor in t.actors
    ]


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES
