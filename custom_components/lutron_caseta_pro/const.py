# const.py
DOMAIN = "lutron_caseta_pro"

MDNS_TYPE = "_lutron._tcp.local."
CONF_HOST = "host"
CONF_PORT = "port"
CONF_NAME = "name"
CONF_USERNAME = "username"
CONF_PASSWORD = "password"
CONF_DEBUG = "debug"
CONF_ACCESSORIES = "accessories"
CONF_ACCESSORY_TYPE = "type"
CONF_INTEGRATION_ID = "integration_id"

DEFAULT_NAME = "Lutron Smart Bridge Pro"

# reconnect backoff for the bridge connection
RECONNECT_INITIAL_DELAY = 1.0
RECONNECT_MAX_DELAY = 60.0

BUTTON_EVENT = f"{DOMAIN}_button_event"

PLATFORMS = ["binary_sensor", "event"]


def signal_bridge(entry_id: str) -> str:
    return f"{DOMAIN}_{entry_id}_bridge"


def signal_accessories(entry_id: str) -> str:
    return f"{DOMAIN}_{entry_id}_accessories"
