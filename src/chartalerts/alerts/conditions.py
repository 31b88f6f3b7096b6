# src/chartalerts/alerts/conditions.py
from __future__ import annotations

from typing import Literal, Optional, get_args

from chartalerts.utils.types import PricePosition, ToolType

AlertCondition = Literal[
    "crossing",
    "crossing_up",
    "crossing_down",
    "entering",
    "exiting",
    "inside",
    "outside",
]

ALL_CONDITIONS: tuple[AlertCondition, ...] = get_args(AlertCondition)
SCALAR_CONDITIONS: tuple[AlertCondition, ...] = ("crossing", "crossing_up", "crossing_down")
REGION_CONDITIONS: tuple[AlertCondition, ...] = ("entering", "exiting", "inside", "outside")

CONDITION_LABELS: dict[str, str] = {
    "crossing": "Crossing",
    "crossing_up": "Crossing Up",
    "crossing_down": "Crossing Down",
    "entering": "Entering",
    "exiting": "Exiting",
    "inside": "Inside",
    "outside": "Outside",
}


def parse_condition(value: object) -> AlertCondition:
    """Validate `value` against the closed condition set."""
    if value not in ALL_CONDITIONS:
        raise ValueError(f"unknown alert condition: {value!r}")
    return value  # type: ignore[return-value]


def is_scalar(condition: AlertCondition) -> bool:
    return condition in SCALAR_CONDITIONS


def is_region(condition: AlertCondition) -> bool:
    return condition in REGION_CONDITIONS


def condition_options(tool_type: Optional[ToolType] = None) -> tuple[AlertCondition, ...]:
    """
    Conditions the edit surface may offer for an alert:
      - vertical markers  -> crossing only
      - shapes            -> the four region conditions
      - anything else     -> the three scalar conditions
    """
    if tool_type == "vertical":
        return ("crossing",)
    if tool_type == "shape":
        return REGION_CONDITIONS
    return SCALAR_CONDITIONS


# --- predicates ---

def position_of(value: float, threshold: float) -> PricePosition:
    # touching the line counts as having reached it
    return "above" if value >= threshold else "below"


def crossing_fires(condition: AlertCondition, prev: PricePosition, curr: PricePosition) -> bool:
    """One transition model for all scalar conditions; the condition only filters direction."""
    if prev == curr or "unknown" in (prev, curr):
        return False
    if condition == "crossing":
        return True
    if condition == "crossing_up":
        return prev == "below" and curr == "above"
    if condition == "crossing_down":
        return prev == "above" and curr == "below"
    return False


def zone_fires(condition: AlertCondition, was_inside: Optional[bool], inside: bool) -> bool:
    """
    inside/outside are level-sensitive (every matching observation);
    entering/exiting fire only on the edge, so a first observation never does.
    """
    if condition == "inside":
        return inside
    if condition == "outside":
        return not inside
    if was_inside is None:
        return False
    if condition == "entering":
        return inside and not was_inside
    if condition == "exiting":
        return was_inside and not inside
    return False
