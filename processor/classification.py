"""Deterministic environment classification from the required-value snapshot."""

HOT_ABOVE_C = 28.0
COLD_BELOW_C = 16.0
IDEAL_TEMP_C = (22.0, 25.0)
IDEAL_HUMIDITY_PCT = (40.0, 60.0)
HUMID_ABOVE_PCT = 65.0
DRY_BELOW_PCT = 30.0


def classify_environment(values: dict[str, float]) -> str:
    """
    Describe the room in a few words, e.g. "hot and humid" or "ideal".

    Temperature picks the base condition; humidity adds a suffix when it is
    outside the comfortable band. Missing kinds are treated as neutral.
    """
    temperature = values.get("temperature")
    humidity = values.get("humidity")

    condition = "neutral"
    if temperature is not None:
        if temperature > HOT_ABOVE_C:
            condition = "hot"
        elif temperature < COLD_BELOW_C:
            condition = "cold"
        elif (
            humidity is not None
            and IDEAL_TEMP_C[0] <= temperature <= IDEAL_TEMP_C[1]
            and IDEAL_HUMIDITY_PCT[0] <= humidity <= IDEAL_HUMIDITY_PCT[1]
        ):
            condition = "ideal"

    if humidity is not None:
        if humidity > HUMID_ABOVE_PCT:
            condition += " and humid"
        elif humidity < DRY_BELOW_PCT:
            condition += " and dry"

    return condition
