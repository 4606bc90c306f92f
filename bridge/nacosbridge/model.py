import dataclasses
import typing


@dataclasses.dataclass
class KeyValue:
    """
    Represents a configuration document as seen by the host framework.
    """
    #: The key for the document, which is the data ID
    key: str
    #: The raw content of the document
    value: bytes


@dataclasses.dataclass
class ServiceInstance:
    """
    Represents an instance of a service as seen by the host framework.
    """
    #: The ID of the instance
    id: str
    #: The name of the service
    name: str
    #: The version of the service
    version: str = ""
    #: The metadata for the instance
    metadata: typing.Dict[str, str] = dataclasses.field(default_factory = dict)
    #: The endpoint URLs for the instance, e.g. grpc://10.0.0.2:9000
    endpoints: typing.List[str] = dataclasses.field(default_factory = list)


@dataclasses.dataclass
class Instance:
    """
    Represents a service instance as stored in Nacos.

    This is used both for the hosts returned when fetching a service and for the
    instances delivered to subscription callbacks.
    """
    #: The IP address of the instance
    ip: str
    #: The port of the instance
    port: int
    #: The name of the service, without the group prefix
    service_name: str = ""
    #: The ID that Nacos assigned to the instance, if known
    instance_id: str = ""
    #: The metadata for the instance
    metadata: typing.Dict[str, str] = dataclasses.field(default_factory = dict)
    #: The load weight for the instance
    weight: float = 1.0
    #: Indicates if the instance is healthy
    healthy: bool = True
    #: Indicates if the instance is enabled
    enabled: bool = True
    #: Indicates if the instance is ephemeral
    ephemeral: bool = True
    #: The cluster that the instance belongs to
    cluster_name: str = ""


@dataclasses.dataclass
class Service:
    """
    Represents a service and its instances as stored in Nacos.
    """
    #: The name of the service, without the group prefix
    name: str
    #: The group that the service belongs to
    group_name: str = ""
    #: The instances of the service
    hosts: typing.List[Instance] = dataclasses.field(default_factory = list)


@dataclasses.dataclass
class RegisterInstanceParams:
    """
    Parameters for registering an instance with Nacos.
    """
    ip: str
    port: int
    service_name: str
    group_name: str
    cluster_name: str
    weight: float
    enable: bool = True
    healthy: bool = True
    ephemeral: bool = True
    metadata: typing.Dict[str, str] = dataclasses.field(default_factory = dict)


@dataclasses.dataclass
class DeregisterInstanceParams:
    """
    Parameters for deregistering an instance from Nacos.
    """
    ip: str
    port: int
    service_name: str
    group_name: str
    cluster_name: str
    ephemeral: bool = True
