import asyncio
import logging
import typing as t

from . import clients, config, errors, model, translate
from .endpoint import parse_endpoint
from .watcher import ServiceWatcher


class Registry:
    """
    Service registry and discovery backed by Nacos.

    Each endpoint of a service is registered as a separate Nacos instance, with the
    endpoint scheme recorded in the instance metadata so that the endpoint URL can be
    rebuilt on discovery.

    Registration is not transactional. If registering one endpoint of a service fails,
    the endpoints registered before it stay registered and the error names the
    endpoint that failed.
    """
    def __init__(
        self,
        options: config.RegistryOptions,
        client: t.Optional[clients.NamingClient] = None
    ):
        self.options = options
        self._client = client or clients.create_naming_client(options)
        self._started = False
        self._logger = logging.getLogger(__name__)

    @classmethod
    def build(cls, endpoint: str, namespace_id: str, *mutators, **options) -> "Registry":
        """
        Creates a registry from an endpoint, a namespace and options.
        """
        return cls(config.RegistryOptions.build(endpoint, namespace_id, *mutators, **options))

    @property
    def clusters(self) -> t.List[str]:
        return [self.options.cluster]

    async def client(self) -> clients.NamingClient:
        """
        Returns the naming client, starting it if required.
        """
        if not self._started:
            try:
                await self._client.startup()
            except Exception as exc:
                raise errors.ClientInitError(self.options.endpoint, exc) from exc
            self._started = True
            self._logger.info(
                "Initialised naming client [endpoint: %s, namespace: %s]",
                self.options.endpoint,
                self.options.namespace_id
            )
        return self._client

    def _endpoints(self, service: model.ServiceInstance):
        """
        Yields the (url, endpoint) pairs for the endpoints of the service to register.
        """
        for url in service.endpoints:
            endpoint = parse_endpoint(url)
            if endpoint.scheme in self.options.skip_schemes:
                self._logger.debug("Skipping %s endpoint %s", endpoint.scheme, url)
                continue
            yield url, endpoint

    async def register(self, service: model.ServiceInstance):
        """
        Registers each endpoint of the service.
        """
        client = await self.client()
        for url, endpoint in self._endpoints(service):
            params = model.RegisterInstanceParams(
                ip = endpoint.host,
                port = endpoint.port,
                service_name = service.name,
                group_name = self.options.group,
                cluster_name = self.options.cluster,
                weight = self.options.weight,
                enable = True,
                healthy = self.options.healthy,
                ephemeral = self.options.ephemeral,
                metadata = translate.registration_metadata(service, endpoint.scheme)
            )
            try:
                registered = await client.register_instance(params)
            except Exception as exc:
                raise errors.RegisterError(url, exc) from exc
            if not registered:
                self._logger.error("Nacos did not accept the registration of %s", url)
                raise errors.RegisterError(url)
            self._logger.info("Registered %s for service %s", url, service.name)

    async def deregister(self, service: model.ServiceInstance):
        """
        Deregisters each endpoint of the service.
        """
        client = await self.client()
        for url, endpoint in self._endpoints(service):
            params = model.DeregisterInstanceParams(
                ip = endpoint.host,
                port = endpoint.port,
                service_name = service.name,
                group_name = self.options.group,
                cluster_name = self.options.cluster,
                ephemeral = self.options.ephemeral
            )
            try:
                deregistered = await client.deregister_instance(params)
            except Exception as exc:
                raise errors.DeregisterError(url, exc) from exc
            if not deregistered:
                self._logger.error("Nacos did not accept the deregistration of %s", url)
                raise errors.DeregisterError(url)
            self._logger.info("Deregistered %s for service %s", url, service.name)

    async def _get_service(self, name: str) -> model.Service:
        client = await self.client()
        try:
            return await client.get_service(name, self.options.group, self.clusters)
        except Exception as exc:
            raise errors.DiscoveryError(name, exc) from exc

    async def get_service(self, name: str) -> t.List[model.ServiceInstance]:
        """
        Returns the current instances of the named service.
        """
        service = await self._get_service(name)
        return [translate.service_instance(host, name) for host in service.hosts]

    async def fetch(self, name: str) -> t.List[model.ServiceInstance]:
        """
        Alias for get_service.
        """
        return await self.get_service(name)

    async def watch(self, name: str, parent: t.Optional[asyncio.Event] = None) -> ServiceWatcher:
        """
        Watches the instances of the named service.

        The first call to ``next`` on the returned watcher returns the instances
        at the time of the call, without waiting for a change.
        """
        client = await self.client()
        group, clusters = self.options.group, self.clusters

        async def unsubscribe():
            await client.unsubscribe(name, group, clusters, watcher.on_services)

        async def prime():
            service = await client.get_service(name, group, clusters)
            return service.hosts

        watcher = ServiceWatcher(
            name,
            group,
            clusters,
            unsubscribe,
            capacity = self.options.queue_size,
            parent = parent
        )
        await watcher.start(
            lambda: client.subscribe(name, group, clusters, watcher.on_services),
            prime
        )
        return watcher

    async def close(self):
        """
        Shuts down the client if it was started.
        """
        if self._started:
            await self._client.shutdown()
            self._started = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
