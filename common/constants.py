"""
Safety-critical constants for the fire-safety monitor.
These values are chosen for fail-safe behavior.
"""

# Gas concentration thresholds (sensor units)
GAS_WARNING_THRESHOLD = 300     # At or above: WARNING
GAS_DANGER_THRESHOLD = 600      # At or above: DANGER (emergency)

# Reconnect timing
DEFAULT_RETRY_INTERVAL_S = 3.0        # Fixed delay between reconnect attempts
DEFAULT_MAX_RECONNECT_ATTEMPTS = 5    # Automatic attempts before EXHAUSTED

# Buffer limits - prevent OOM on a misbehaving endpoint
MAX_FRAME_SIZE = 16384          # 16KB max telemetry frame

# Telemetry wire fields
FIELD_GAS = "gas"
FIELD_FLAME = "flama"
FIELD_FAN_STATE = "estadoVent"
FIELD_SPRINKLER_STATE = "estadoAsp"
FIELD_MODE = "modo"

# Command Service targets and values
DEVICE_FAN = "ventilador"
DEVICE_SPRINKLER = "aspersor"
DEVICES = (DEVICE_FAN, DEVICE_SPRINKLER)

STATE_ON = "ON"
STATE_OFF = "OFF"

MODE_MANUAL = "MANUAL"
MODE_AUTOMATIC = "AUTOMATICO"

# Emergency reasons (for logging/status)
EMERGENCY_REASON_FLAME = "flame"
EMERGENCY_REASON_GAS = "gas"

# Endpoints (default)
DEFAULT_TELEMETRY_URL = "ws://localhost:4000/ws/sensors"
DEFAULT_COMMAND_API_URL = "http://localhost:4000/api"
DEFAULT_COMMAND_TIMEOUT_S = 5.0
