"""
Core constants and defaults for FTMS smart bike control.
"""

# FTMS (Fitness Machine Service) UUIDs
FTMS_SERVICE_UUID = "00001826-0000-1000-8000-00805f9b34fb"
INDOOR_BIKE_DATA_CHAR_UUID = "00002ad2-0000-1000-8000-00805f9b34fb"
FITNESS_MACHINE_CONTROL_POINT_CHAR_UUID = "00002ad9-0000-1000-8000-00805f9b34fb"

# Advertised name of the iConsole 0028 bike, matched exactly
ICONSOLE_0028_NAME = "iConsole+0028"

# Substring (case-insensitive) matched by the debug bike
DEBUG_NAME_MARKER = "console"

# Name reported by the simulated device
SIMULATED_DEVICE_NAME = "some hypothetical non-bluetooth device"

# Discovery / command timing, in seconds
DISCOVERY_POLL_INTERVAL = 1.0
SCAN_TIMEOUT = 5.0
CONNECT_TIMEOUT = 10.0
RESPONSE_TIMEOUT = 1.0

# Upper bound shared by target cadence and target power
DEFAULT_MAX_LEVEL = 32

# Application metadata
__version__ = "0.1.0"
__description__ = "Discover, connect to and drive FTMS smart bikes"
