import logging
import typing as t

from pydantic import Field, StringConstraints, ValidationError
from pydantic.functional_validators import AfterValidator

from configomatic import Configuration, Section, LoggingConfiguration

from .endpoint import parse_endpoint
from .errors import InvalidEndpoint, InvalidOption, UnknownOption


#: Type for a non-empty string
NonEmptyString = t.Annotated[str, StringConstraints(min_length = 1)]


def validate_endpoint(v: str) -> str:
    """
    Validates that the given value is a usable Nacos endpoint.
    """
    try:
        parse_endpoint(v)
    except InvalidEndpoint as exc:
        raise ValueError(exc.reason)
    return v


#: Type for a string that is a valid endpoint URL
EndpointUrl = t.Annotated[str, AfterValidator(validate_endpoint)]


#: The log levels that are understood for client internals
LogLevel = t.Literal["debug", "info", "warn", "error"]


#: Type for a function that mutates a set of option fields
Mutator = t.Callable[[t.Dict[str, t.Any]], None]


class Options(Section, frozen = True, extra = "forbid"):
    """
    Base model for the options shared by the config source and the registry.
    """
    #: The URL of the Nacos server
    endpoint: EndpointUrl
    #: The namespace to use
    #: The empty string is the public namespace
    namespace_id: str
    #: The group within the namespace
    group: NonEmptyString = "DEFAULT_GROUP"
    #: The timeout for calls to Nacos, in milliseconds
    timeout_ms: t.Annotated[int, Field(gt = 0)] = 5000
    #: The log level for the client internals
    log_level: LogLevel = "warn"
    #: Directory for client logs, if required
    log_dir: t.Optional[str] = None
    #: Directory for client caches, if required
    cache_dir: t.Optional[str] = None
    #: The name of the client implementation to use
    client_type: NonEmptyString = "http"
    #: The username to use to authenticate with Nacos, if auth is enabled
    username: t.Optional[str] = None
    #: The password to use to authenticate with Nacos
    password: t.Optional[str] = None

    @property
    def timeout(self) -> float:
        """
        The timeout for calls to Nacos, in seconds.
        """
        return self.timeout_ms / 1000

    @classmethod
    def build(
        cls,
        endpoint: str,
        namespace_id: str,
        *mutators: Mutator,
        **options: t.Any
    ):
        """
        Assembles an options record for the given endpoint and namespace.

        Mutators are applied in order, followed by the keyword options. Any optional
        field that is still at a zero value afterwards takes its default.
        """
        fields = { "endpoint": endpoint, "namespace_id": namespace_id }
        for mutate in mutators:
            mutate(fields)
        fields.update(options)
        known = set(cls.model_fields)
        known.update(f.alias for f in cls.model_fields.values() if f.alias)
        unknown = set(fields).difference(known)
        if unknown:
            raise UnknownOption(unknown)
        # Report a bad endpoint with the same error as the parser would
        parse_endpoint(endpoint)
        fields = {
            name: value
            for name, value in fields.items()
            if not is_zero(value) or name in ("namespace_id", "namespaceId")
        }
        try:
            return cls(**fields)
        except ValidationError as exc:
            raise InvalidOption(str(exc)) from exc


class ConfigOptions(Options):
    """
    Options for a configuration source.
    """
    #: The ID of the configuration document
    data_id: NonEmptyString
    #: The time that the server may hold a listen request open, in milliseconds
    long_poll_timeout_ms: t.Annotated[int, Field(gt = 0)] = 30000


class RegistryOptions(Options):
    """
    Options for a service registry.
    """
    #: The cluster to register instances in
    cluster: NonEmptyString = "DEFAULT"
    #: The load weight to advertise for registered instances
    weight: t.Annotated[float, Field(gt = 0)] = 100
    #: The healthy flag to register instances with
    healthy: bool = True
    #: Indicates whether registered instances are ephemeral
    #: Ephemeral instances are kept alive with heartbeats
    ephemeral: bool = True
    #: The interval between heartbeats for ephemeral instances, in seconds
    heartbeat_interval: t.Annotated[float, Field(gt = 0)] = 5
    #: The interval between polls for subscribed services, in seconds
    subscribe_interval: t.Annotated[float, Field(gt = 0)] = 10
    #: The number of undelivered updates that a service watcher will hold
    queue_size: t.Annotated[int, Field(ge = 1)] = 100
    #: Endpoint schemes that are not registered
    #: By default, endpoints of all schemes are registered
    skip_schemes: t.Tuple[str, ...] = ()


def is_zero(value: t.Any) -> bool:
    """
    Returns true if the value is the zero value for its type.

    Booleans are never considered zero so that an explicit False is kept.
    """
    if isinstance(value, bool):
        return False
    return value is None or value == "" or value == 0 or value == ()


def _mutator(name: str) -> t.Callable[[t.Any], Mutator]:
    def factory(value):
        def mutate(fields):
            fields[name] = value
        return mutate
    factory.__name__ = name
    factory.__doc__ = f"Returns a mutator that sets the {name} option."
    return factory


group = _mutator("group")
data_id = _mutator("data_id")
cluster = _mutator("cluster")
weight = _mutator("weight")
timeout_ms = _mutator("timeout_ms")
log_level = _mutator("log_level")
log_dir = _mutator("log_dir")
cache_dir = _mutator("cache_dir")


#: Maps option log levels to logging levels
LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def apply_log_level(options: Options):
    """
    Applies the log level from the options to the client loggers.
    """
    logging.getLogger("nacosbridge.clients").setLevel(LOG_LEVELS[options.log_level])


class BridgeConfig(
    Configuration,
    default_path = "/etc/nacosbridge/config.yaml",
    path_env_var = "NACOSBRIDGE_CONFIG",
    env_prefix = "NACOSBRIDGE"
):
    """
    Configuration model for the nacos-bridge command line.
    """
    #: The logging configuration
    logging: LoggingConfiguration = Field(default_factory = LoggingConfiguration)

    #: The options for the configuration source
    source: t.Optional[ConfigOptions] = None
    #: The options for the registry
    registry: t.Optional[RegistryOptions] = None
