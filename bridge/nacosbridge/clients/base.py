import typing as t

from .. import config, model


#: Callback for configuration changes, called with (namespace, group, data_id, content)
OnChange = t.Callable[[str, str, str, str], None]

#: Callback for subscriptions, called with (instances, error)
SubscribeCallback = t.Callable[[t.List[model.Instance], t.Optional[BaseException]], None]


class Client:
    """
    Base class for Nacos clients.
    """

    async def startup(self):
        """
        Perform any startup tasks that are required.
        """

    async def shutdown(self):
        """
        Perform any shutdown tasks that are required.
        """

    async def __aenter__(self):
        await self.startup()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()


class ConfigClient(Client):
    """
    Base class for a client that reads and listens to configuration documents.
    """

    async def get_config(self, data_id: str, group: str) -> str:
        """
        Returns the content of the configuration document with the given data ID.
        """
        raise NotImplementedError

    async def listen_config(self, data_id: str, group: str, on_change: OnChange):
        """
        Listen for changes to the configuration document with the given data ID.

        Returns once the listener has been accepted. The callback may be invoked
        from any thread and must not block.
        """
        raise NotImplementedError

    async def cancel_listen_config(self, data_id: str, group: str, on_change: OnChange):
        """
        Remove the given listener for the configuration document.

        Other listeners for the same document are not affected.
        """
        raise NotImplementedError

    @classmethod
    def from_options(cls, options: config.ConfigOptions) -> "ConfigClient":
        """
        Initialises an instance of the client from an options object.
        """
        raise NotImplementedError


class NamingClient(Client):
    """
    Base class for a client that registers and discovers service instances.
    """

    async def register_instance(self, params: model.RegisterInstanceParams) -> bool:
        """
        Registers an instance of a service.
        """
        raise NotImplementedError

    async def deregister_instance(self, params: model.DeregisterInstanceParams) -> bool:
        """
        Deregisters an instance of a service.
        """
        raise NotImplementedError

    async def get_service(
        self,
        name: str,
        group: str,
        clusters: t.Sequence[str] = ()
    ) -> model.Service:
        """
        Returns the service with the given name, including the current instances.
        """
        raise NotImplementedError

    async def subscribe(
        self,
        name: str,
        group: str,
        clusters: t.Sequence[str],
        callback: SubscribeCallback
    ):
        """
        Subscribe to changes to the instances of the given service.

        Returns once the subscription has been accepted. The callback may be invoked
        from any thread and must not block.
        """
        raise NotImplementedError

    async def unsubscribe(
        self,
        name: str,
        group: str,
        clusters: t.Sequence[str],
        callback: SubscribeCallback
    ):
        """
        Remove the given callback from the subscription for the service.

        Other callbacks subscribed to the same service are not affected.
        """
        raise NotImplementedError

    @classmethod
    def from_options(cls, options: config.RegistryOptions) -> "NamingClient":
        """
        Initialises an instance of the client from an options object.
        """
        raise NotImplementedError
