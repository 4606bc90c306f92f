import typing as t

from . import model
from .endpoint import format_host


#: Metadata keys that are reserved for the bridge
#: Any values that callers put under these keys are overwritten
KIND_KEY = "kind"
LEGACY_KIND_KEY = "scheme"
ID_KEY = "id"
NAME_KEY = "name"
VERSION_KEY = "version"


def registration_metadata(
    service: model.ServiceInstance,
    scheme: str
) -> t.Dict[str, str]:
    """
    Returns the metadata to register for an endpoint of the given service.

    The caller's metadata is copied rather than modified.
    """
    metadata = dict(service.metadata or {})
    metadata.update({
        KIND_KEY: scheme,
        ID_KEY: service.id,
        NAME_KEY: service.name,
        VERSION_KEY: service.version,
    })
    return metadata


def instance_scheme(instance: model.Instance) -> str:
    """
    Returns the URL scheme recorded for the instance.
    """
    return instance.metadata.get(KIND_KEY) or instance.metadata.get(LEGACY_KIND_KEY, "")


def service_instance(instance: model.Instance, service_name: str = "") -> model.ServiceInstance:
    """
    Converts an instance from Nacos into a service instance for the framework.
    """
    return model.ServiceInstance(
        # Prefer the ID that Nacos assigned, falling back to the one we registered
        id = instance.instance_id or instance.metadata.get(ID_KEY, ""),
        name = instance.service_name or service_name,
        version = instance.metadata.get(VERSION_KEY, ""),
        metadata = instance.metadata,
        endpoints = [f"{instance_scheme(instance)}://{format_host(instance.ip)}:{instance.port}"]
    )
