from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import voluptuous as vol

from homeassistant import config_entries
try:
    from homeassistant.helpers.service_info.zeroconf import ZeroconfServiceInfo
except ImportError:  # Home Assistant < 2025.1
    from homeassistant.components.zeroconf import ZeroconfServiceInfo
from homeassistant.core import callback

from .const import (
    DOMAIN,
    CONF_ACCESSORIES,
    CONF_ACCESSORY_TYPE,
    CONF_DEBUG,
    CONF_HOST,
    CONF_INTEGRATION_ID,
    CONF_NAME,
    CONF_PASSWORD,
    CONF_PORT,
    CONF_USERNAME,
    DEFAULT_NAME,
)
from .lib.accessory import AccessoryConfig, InvalidAccessoryConfig
from .lib.protocol_const import (
    ACCESSORY_KINDS,
    DEFAULT_PASSWORD,
    DEFAULT_PORT,
    DEFAULT_USERNAME,
    KIND_PICO_REMOTE,
)

_LOGGER = logging.getLogger(__name__)

CONF_REMOVE_INTEGRATION_ID = "remove_integration_id"

PORT_VALIDATOR = vol.All(int, vol.Range(min=1, max=65535))


def merge_accessory(accessories: list[dict[str, Any]], new: dict[str, Any]) -> list[dict[str, Any]]:
    """Add ``new`` or replace the entry with the same integration id."""

    config = AccessoryConfig.from_dict(new)
    merged = [
        item for item in accessories
        if str(item.get(CONF_INTEGRATION_ID, item.get("integrationID"))) != config.key
    ]
    merged.append(config.as_dict())
    return merged


def remove_accessory(accessories: list[dict[str, Any]], integration_id: Any) -> list[dict[str, Any]]:
    key = str(integration_id).strip()
    return [
        item for item in accessories
        if str(item.get(CONF_INTEGRATION_ID, item.get("integrationID"))) != key
    ]


def _decode_props(discovery_info: ZeroconfServiceInfo) -> Dict[str, str]:
    props: Dict[str, str] = {}
    for k, v in (discovery_info.properties or {}).items():
        if isinstance(k, bytes):
            k = k.decode("utf-8")
        if isinstance(v, bytes):
            v = v.decode("utf-8")
        props[k] = v
    return props


def _credentials_schema(defaults: Dict[str, Any]) -> vol.Schema:
    return vol.Schema({
        vol.Required(CONF_USERNAME, default=defaults.get(CONF_USERNAME, DEFAULT_USERNAME)): str,
        vol.Required(CONF_PASSWORD, default=defaults.get(CONF_PASSWORD, DEFAULT_PASSWORD)): str,
    })


class ConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
    VERSION = 1

    def __init__(self) -> None:
        self._chosen_bridge: Optional[Dict[str, Any]] = None

    # ------------------------------------------------------------------
    # step 1: user types name + IP + port + credentials
    # ------------------------------------------------------------------
    async def async_step_user(self, user_input: Dict[str, Any] | None = None):
        if user_input is not None:
            host = user_input[CONF_HOST].strip()
            port = user_input[CONF_PORT]
            await self.async_set_unique_id(f"{host}:{port}")
            self._abort_if_unique_id_configured()

            return self.async_create_entry(
                title=user_input[CONF_NAME],
                data={
                    CONF_NAME: user_input[CONF_NAME],
                    CONF_HOST: host,
                    CONF_PORT: port,
                    CONF_USERNAME: user_input[CONF_USERNAME],
                    CONF_PASSWORD: user_input[CONF_PASSWORD],
                },
                options={CONF_ACCESSORIES: [], CONF_DEBUG: False},
            )

        schema = vol.Schema({
            vol.Required(CONF_NAME, default=DEFAULT_NAME): str,
            vol.Required(CONF_HOST): str,
            vol.Required(CONF_PORT, default=DEFAULT_PORT): PORT_VALIDATOR,
            vol.Required(CONF_USERNAME, default=DEFAULT_USERNAME): str,
            vol.Required(CONF_PASSWORD, default=DEFAULT_PASSWORD): str,
        })
        return self.async_show_form(
            step_id="user",
            data_schema=schema,
            description_placeholders={
                "help": (
                    "Enter the IP address of your Smart Bridge Pro. Telnet "
                    "integration must be enabled in the Lutron app; the default "
                    "port is 23 and the default login is lutron / integration."
                )
            },
        )

    # ------------------------------------------------------------------
    # zeroconf path (auto-discovery)
    # ------------------------------------------------------------------
    async def async_step_zeroconf(self, discovery_info: ZeroconfServiceInfo):
        """Handle auto-discovery via mDNS."""
        props = _decode_props(discovery_info)
        host = discovery_info.host
        name = discovery_info.name.split(".")[0] or DEFAULT_NAME

        _LOGGER.info(
            "Zeroconf discovered Lutron bridge %s at %s with TXT %s",
            name,
            host,
            props,
        )

        unique_id = f"{host}:{DEFAULT_PORT}"
        await self.async_set_unique_id(unique_id)
        self._abort_if_unique_id_configured(updates={CONF_HOST: host})

        self.context["title_placeholders"] = {"name": f"{name} ({host})"}
        self._chosen_bridge = {
            CONF_NAME: name,
            CONF_HOST: host,
            CONF_PORT: DEFAULT_PORT,
        }

        return self.async_show_form(
            step_id="zeroconf_confirm",
            description_placeholders={"name": name, "host": host},
            data_schema=_credentials_schema({}),
        )

    async def async_step_zeroconf_confirm(self, user_input: Dict[str, Any] | None = None):
        """User confirmed the discovered bridge and entered credentials."""
        if self._chosen_bridge is None:
            return self.async_abort(reason="unknown")

        if user_input is None:
            return self.async_show_form(
                step_id="zeroconf_confirm",
                description_placeholders={
                    "name": self._chosen_bridge[CONF_NAME],
                    "host": self._chosen_bridge[CONF_HOST],
                },
                data_schema=_credentials_schema({}),
            )

        info = self._chosen_bridge
        return self.async_create_entry(
            title=info[CONF_NAME],
            data={
                **info,
                CONF_USERNAME: user_input[CONF_USERNAME],
                CONF_PASSWORD: user_input[CONF_PASSWORD],
            },
            options={CONF_ACCESSORIES: [], CONF_DEBUG: False},
        )

    @staticmethod
    @callback
    def async_get_options_flow(config_entry):
        """Return the options flow for this entry."""
        return LutronOptionsFlowHandler(config_entry)


# ----------------------------------------------------------------------
# options flow: debug logging and the list of remotes
# ----------------------------------------------------------------------
class LutronOptionsFlowHandler(config_entries.OptionsFlow):
    def __init__(self, entry: config_entries.ConfigEntry) -> None:
        self.entry = entry

    async def async_step_init(self, user_input: Dict[str, Any] | None = None):
        accessories: list[dict[str, Any]] = list(self.entry.options.get(CONF_ACCESSORIES, []))
        errors: Dict[str, str] = {}

        if user_input is not None:
            ident = user_input.get(CONF_INTEGRATION_ID)
            remove = user_input.get(CONF_REMOVE_INTEGRATION_ID)
            try:
                if ident is not None:
                    accessories = merge_accessory(
                        accessories,
                        {
                            CONF_ACCESSORY_TYPE: user_input.get(CONF_ACCESSORY_TYPE, KIND_PICO_REMOTE),
                            CONF_INTEGRATION_ID: ident,
                            CONF_NAME: user_input.get(CONF_NAME) or f"Pico {ident}",
                        },
                    )
            except InvalidAccessoryConfig as err:
                _LOGGER.debug("Rejected accessory from options: %s", err)
                errors["base"] = "invalid_accessory"

            if not errors:
                if remove is not None:
                    accessories = remove_accessory(accessories, remove)
                return self.async_create_entry(
                    title="Lutron options",
                    data={
                        CONF_DEBUG: user_input.get(CONF_DEBUG, False),
                        CONF_ACCESSORIES: accessories,
                    },
                )

        configured = ", ".join(
            f"{item.get(CONF_INTEGRATION_ID)}: {item.get(CONF_NAME)}" for item in accessories
        ) or "none"
        schema = vol.Schema({
            vol.Optional(
                CONF_DEBUG,
                default=self.entry.options.get(CONF_DEBUG, False),
            ): bool,
            vol.Optional(CONF_ACCESSORY_TYPE, default=KIND_PICO_REMOTE): vol.In(ACCESSORY_KINDS),
            vol.Optional(CONF_INTEGRATION_ID): vol.All(int, vol.Range(min=1)),
            vol.Optional(CONF_NAME): str,
            vol.Optional(CONF_REMOVE_INTEGRATION_ID): vol.All(int, vol.Range(min=1)),
        })

        return self.async_show_form(
            step_id="init",
            data_schema=schema,
            errors=errors,
            description_placeholders={
                "configured": configured,
                "explain": (
                    "Add or replace a Pico remote by entering its integration ID "
                    "from the Lutron app's integration report. Entering an ID that "
                    "is already configured replaces that remote."
                ),
            },
        )
