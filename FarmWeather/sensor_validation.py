"""Compare local sensor readings with provider weather."""
from weather_data import SensorReading, WeatherSnapshot, WeatherValidation

# Greenhouse air runs warmer and damper than outside, so the bands are wide.
TEMP_OUTLIER = 10.0
HUMIDITY_OUTLIER = 25.0
TEMP_LOW = 15.0
HUMIDITY_LOW = 30.0
TEMP_MEDIUM = 7.0
HUMIDITY_MEDIUM = 15.0


def compare_readings(reading: SensorReading, snapshot: WeatherSnapshot) -> WeatherValidation:
    """
    Classify how far a sensor reading sits from the weather snapshot.

    A temperature difference above 10°C or humidity difference above 25% is
    an outlier. Reliability is "low" with more than one outlier or a
    difference of at least 15°C / 30%, "medium" with any outlier or more
    than 7°C / 15%, and "high" otherwise.
    """
    temperature_diff = abs(reading.temperature - snapshot.temperature)
    humidity_diff = abs(reading.humidity - snapshot.humidity)

    outliers = []
    recommendations = []

    if temperature_diff > TEMP_OUTLIER:
        outliers.append(f"Temperature difference: {temperature_diff:.1f}°C")
        recommendations.append("Check air temperature sensor calibration")

    if humidity_diff > HUMIDITY_OUTLIER:
        outliers.append(f"Humidity difference: {humidity_diff:.1f}%")
        recommendations.append("Check air humidity sensor calibration")

    if len(outliers) > 1 or temperature_diff >= TEMP_LOW or humidity_diff >= HUMIDITY_LOW:
        reliability = "low"
    elif outliers or temperature_diff > TEMP_MEDIUM or humidity_diff > HUMIDITY_MEDIUM:
        reliability = "medium"
    else:
        reliability = "high"
        recommendations.append("Sensor data appears reliable")

    return WeatherValidation(
        sensor_reliability=reliability,
        temperature_diff=temperature_diff,
        humidity_diff=humidity_diff,
        outliers=outliers,
        recommendations=recommendations,
    )
