"""Kinney & Wiruth discrete factor scales.

Effect (E) is the consequence of an incident, exposure (B, Dutch
"blootstelling") how often people are exposed, probability (W, Dutch
"waarschijnlijkheid") the likelihood of the incident.
"""

EFFECT_SCALE: dict[float, str] = {
    1: "Scratches - minor injury, no lost time",
    3: "Important - minor injury, possible lost time",
    7: "Serious - serious injury, lost time",
    15: "Very serious - permanent disability, one fatality",
    40: "Disaster - multiple fatalities",
    100: "Catastrophe - many fatalities",
}

EXPOSURE_SCALE: dict[float, str] = {
    0.5: "Very rarely - once per year or less",
    1: "Rarely - few times per year",
    2: "Uncommon - once per month",
    3: "Occasional - once per week",
    6: "Frequent - once per day",
    10: "Continuous - continuously or multiple times per day",
}

PROBABILITY_SCALE: dict[float, str] = {
    0.1: "Almost impossible - never heard of in industry",
    0.2: "Practically impossible - has happened elsewhere",
    0.5: "Conceivable - remotely possible",
    1: "Not unusual - could happen",
    3: "Quite possible - about 50/50 chance",
    6: "Likely - probable if not corrected",
    10: "Expected - to be expected",
}

EFFECT_VALUES = frozenset(EFFECT_SCALE)
EXPOSURE_VALUES = frozenset(EXPOSURE_SCALE)
PROBABILITY_VALUES = frozenset(PROBABILITY_SCALE)


def is_scale_value(value, allowed: frozenset) -> bool:
    """Membership test that rejects booleans and non-numbers."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return value in allowed
