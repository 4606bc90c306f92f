import asyncio
import logging
import typing as t

from . import clients, config, errors, model
from .watcher import ConfigWatcher


class ConfigSource:
    """
    Configuration source that loads and watches a document stored in Nacos.

    The client is created on first use and shared by all the watchers created by
    the source.
    """
    def __init__(
        self,
        options: config.ConfigOptions,
        client: t.Optional[clients.ConfigClient] = None
    ):
        self.options = options
        self._client = client
        self._started = False
        self._logger = logging.getLogger(__name__)

    @classmethod
    def build(cls, endpoint: str, namespace_id: str, *mutators, **options) -> "ConfigSource":
        """
        Creates a source from an endpoint, a namespace and options.
        """
        return cls(config.ConfigOptions.build(endpoint, namespace_id, *mutators, **options))

    async def client(self) -> clients.ConfigClient:
        """
        Returns the config client, creating and starting it if required.
        """
        if self._client is None:
            self._client = clients.create_config_client(self.options)
        if not self._started:
            try:
                await self._client.startup()
            except Exception as exc:
                raise errors.ClientInitError(self.options.endpoint, exc) from exc
            self._started = True
            self._logger.info(
                "Initialised config client [endpoint: %s, namespace: %s]",
                self.options.endpoint,
                self.options.namespace_id
            )
        return self._client

    async def load(self) -> t.List[model.KeyValue]:
        """
        Loads the configuration document.
        """
        client = await self.client()
        try:
            content = await client.get_config(self.options.data_id, self.options.group)
        except Exception as exc:
            raise errors.ConfigFetchError(self.options.data_id, exc) from exc
        self._logger.info("Loaded config %s/%s", self.options.group, self.options.data_id)
        return [model.KeyValue(key = self.options.data_id, value = content.encode())]

    async def watch(self, parent: t.Optional[asyncio.Event] = None) -> ConfigWatcher:
        """
        Watches the configuration document for changes.

        Returns once the listener has been accepted by Nacos.
        """
        client = await self.client()
        data_id, group = self.options.data_id, self.options.group

        async def unsubscribe():
            await client.cancel_listen_config(data_id, group, watcher.on_change)

        watcher = ConfigWatcher(data_id, group, unsubscribe, parent = parent)
        await watcher.start(lambda: client.listen_config(data_id, group, watcher.on_change))
        return watcher

    async def close(self):
        """
        Shuts down the client if it was started.
        """
        if self._client is not None and self._started:
            await self._client.shutdown()
            self._started = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
