import dataclasses
import ipaddress
import typing as t

from pydantic import AnyUrl, TypeAdapter, ValidationError

from .errors import InvalidEndpoint


#: Ports used when a URL for one of these schemes does not give one
DEFAULT_PORTS = {
    "http": 80,
    "https": 443,
}


_url_adapter = TypeAdapter(AnyUrl)


@dataclasses.dataclass(frozen = True)
class Endpoint:
    """
    Represents a network endpoint parsed from a URL.
    """
    #: The host for the endpoint, with IPv6 addresses unbracketed
    host: str
    #: The port for the endpoint
    port: int
    #: The URL scheme for the endpoint
    scheme: str

    @property
    def url(self) -> str:
        """
        The endpoint as a URL.
        """
        return f"{self.scheme}://{format_host(self.host)}:{self.port}"


def format_host(host: str) -> str:
    """
    Returns the host as it appears in a URL, i.e. with IPv6 addresses in brackets.
    """
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return host
    return f"[{host}]" if address.version == 6 else host


def default_port(scheme: str, port: int = 0) -> int:
    """
    Returns the given port, or the default port for the scheme when the port is zero.

    Schemes without a default port keep a port of zero.
    """
    if port:
        return port
    return DEFAULT_PORTS.get(scheme, port)


def parse_endpoint(url: str) -> Endpoint:
    """
    Parses the given URL into an endpoint.

    Raises InvalidEndpoint if the URL cannot be parsed, has no host or has no port
    and a scheme that does not define a default.
    """
    try:
        parsed = _url_adapter.validate_python(url)
    except ValidationError as exc:
        # Use the first error message as the reason
        raise InvalidEndpoint(url, exc.errors()[0]["msg"]) from exc
    if not parsed.host:
        raise InvalidEndpoint(url, "host is empty")
    port = default_port(parsed.scheme, parsed.port or 0)
    if not port:
        raise InvalidEndpoint(url, f"no port given and scheme '{parsed.scheme}' has no default")
    # IPv6 hosts are bracketed in URLs but not in Nacos
    host = parsed.host
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return Endpoint(host = host, port = port, scheme = parsed.scheme)


def split_host_port(url: str) -> t.Tuple[str, int]:
    """
    Returns the (host, port) tuple for the given URL.
    """
    endpoint = parse_endpoint(url)
    return endpoint.host, endpoint.port
