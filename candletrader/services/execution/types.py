"""Execution intent/result dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Literal, Optional

Side = Literal["buy", "sell"]


class ExecFailure(str, Enum):
    INSUFFICIENT_BUYING_POWER = "insufficient_buying_power"
    POSITION_LIMIT_REACHED = "position_limit_reached"
    WASH_TRADE_PREVENTED = "wash_trade_prevented"
    BROKER_REJECTED = "broker_rejected"
    NETWORK_ERROR = "network_error"
    CLOSURE_FAILED = "closure_failed"
    INVALID_ORDER = "invalid_order"
    HALTED = "halted"


def opposite(side: Side) -> Side:
    return "sell" if side == "buy" else "buy"


@dataclass(slots=True)
class ExecResult:
    """Outcome of attempting to submit an order."""

    accepted: bool
    reason: str
    failure: Optional[ExecFailure] = None
    client_order_id: Optional[str] = None
    order_id: Optional[str] = None
    side: Optional[Side] = None
    quantity: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def rejected(cls, failure: ExecFailure, reason: str, **kwargs: Any) -> "ExecResult":
        return cls(False, reason, failure=failure, **kwargs)


__all__ = ["ExecFailure", "ExecResult", "Side", "opposite"]
