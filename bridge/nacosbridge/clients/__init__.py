import importlib.metadata

from .. import config  # noqa: TID252
from ..errors import ClientInitError  # noqa: TID252
from .base import Client, ConfigClient, NamingClient  # noqa: F401


CONFIG_EP_GROUP = "nacosbridge.clients.config"
NAMING_EP_GROUP = "nacosbridge.clients.naming"


def _load_type(group: str, name: str):
    (ep,) = importlib.metadata.entry_points(group = group, name = name)
    return ep.load()


def create_config_client(options: config.ConfigOptions) -> ConfigClient:
    """
    Creates the config client selected by the given options.
    """
    try:
        client_type = _load_type(CONFIG_EP_GROUP, options.client_type)
        return client_type.from_options(options)
    except Exception as exc:
        raise ClientInitError(options.endpoint, exc) from exc


def create_naming_client(options: config.RegistryOptions) -> NamingClient:
    """
    Creates the naming client selected by the given options.
    """
    try:
        client_type = _load_type(NAMING_EP_GROUP, options.client_type)
        return client_type.from_options(options)
    except Exception as exc:
        raise ClientInitError(options.endpoint, exc) from exc
