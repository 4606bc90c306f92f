import asyncio
import hashlib
import json
import logging
import random
import typing as t
import urllib.parse

import httpx

from .. import config, model, util  # noqa: TID252
from ..endpoint import format_host, parse_endpoint  # noqa: TID252

from . import base


#: Separates the fields of a key in a listen request
WORD_SEPARATOR = "\x02"
#: Separates the keys in a listen request
LINE_SEPARATOR = "\x01"

#: The code that Nacos returns from a heartbeat when it has forgotten the instance
INSTANCE_NOT_FOUND = 20404


def content_md5(content: str) -> str:
    """
    Returns the MD5 that Nacos uses to detect changes to a configuration document.
    """
    if not content:
        return ""
    return hashlib.md5(content.encode()).hexdigest()


def grouped_name(name: str, group: str) -> str:
    """
    Returns the name of a service qualified with its group.
    """
    return f"{group}@@{name}"


def ungrouped_name(name: str) -> str:
    """
    Returns the name of a service without any group qualification.
    """
    return name.split("@@", 1)[-1]


def base_url(endpoint: str) -> str:
    """
    Returns the base URL for the Nacos API at the given endpoint.
    """
    parsed = parse_endpoint(endpoint)
    scheme = "https" if parsed.scheme == "https" else "http"
    return f"{scheme}://{format_host(parsed.host)}:{parsed.port}"


class HttpClient(base.Client):
    """
    Base class for clients that use the Nacos HTTP API.
    """
    def __init__(
        self,
        endpoint: str,
        namespace_id: str,
        *,
        timeout: float = 5,
        username: t.Optional[str] = None,
        password: t.Optional[str] = None,
        transport: t.Optional[httpx.AsyncBaseTransport] = None
    ):
        self.namespace_id = namespace_id
        self.timeout = timeout
        self.username = username
        self.password = password
        self._access_token = None
        self._tasks: t.Dict[t.Tuple, asyncio.Task] = {}
        self._logger = logging.getLogger(__name__)
        self._client = httpx.AsyncClient(
            base_url = base_url(endpoint),
            timeout = timeout,
            transport = transport,
            event_hooks = { "response": [self._log_response] }
        )

    async def _log_response(self, response):
        """
        HTTPX response hook that logs responses.
        """
        self._logger.debug(
            "Nacos request: \"%s %s\" %s",
            response.request.method,
            response.request.url,
            response.status_code
        )

    async def startup(self):
        await self._client.__aenter__()
        if self.username:
            await self._login()

    async def shutdown(self):
        # Stop any background tasks before closing the client they use
        for key in list(self._tasks):
            await self._stop_task(key)
        await self._client.__aexit__(None, None, None)

    async def _login(self):
        """
        Fetches an access token using the configured credentials.
        """
        response = await self._client.post(
            "/nacos/v1/auth/login",
            data = { "username": self.username, "password": self.password }
        )
        response.raise_for_status()
        self._access_token = response.json()["accessToken"]
        self._logger.info("Authenticated with Nacos as %s", self.username)

    def _params(self, **params):
        """
        Returns the given params with any authentication params added.
        """
        if self._access_token:
            params["accessToken"] = self._access_token
        return params

    def _start_task(self, key, coro):
        """
        Starts a background task that is identified by the given key.
        """
        self._tasks[key] = asyncio.create_task(coro)

    async def _stop_task(self, key):
        """
        Cancels the background task with the given key, if there is one.
        """
        task = self._tasks.pop(key, None)
        if task is not None:
            await util.task_cancel_and_wait(task)

    async def _retry_sleep(self):
        # Add jitter so that clients do not retry in lockstep
        await asyncio.sleep(self.timeout / 2 + random.uniform(0, 1))


class ConfigClient(HttpClient, base.ConfigClient):
    """
    Config client that uses the Nacos HTTP API.

    Changes are detected using long polling, with one polling task per document.
    """
    def __init__(self, endpoint: str, namespace_id: str, *, long_poll_timeout: float = 30, **kwargs):
        super().__init__(endpoint, namespace_id, **kwargs)
        self.long_poll_timeout = long_poll_timeout
        self._listeners: t.Dict[t.Tuple[str, str], t.List[base.OnChange]] = {}

    def _tenant(self, params):
        # The public namespace is indicated by leaving out the tenant
        if self.namespace_id:
            params["tenant"] = self.namespace_id
        return self._params(**params)

    async def get_config(self, data_id: str, group: str) -> str:
        response = await self._client.get(
            "/nacos/v1/cs/configs",
            params = self._tenant({ "dataId": data_id, "group": group })
        )
        response.raise_for_status()
        return response.text

    async def _current_content(self, data_id, group):
        """
        Returns the current content of the document, or an empty string if it does not exist.
        """
        try:
            return await self.get_config(data_id, group)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return ""
            raise

    async def _listen(self, data_id, group, md5):
        """
        Makes a long polling request for the document and returns true if it changed.
        """
        fields = [data_id, group, md5]
        if self.namespace_id:
            fields.append(self.namespace_id)
        timeout_ms = int(self.long_poll_timeout * 1000)
        response = await self._client.post(
            "/nacos/v1/cs/configs/listener",
            params = self._params(),
            data = { "Listening-Configs": WORD_SEPARATOR.join(fields) + LINE_SEPARATOR },
            headers = { "Long-Pulling-Timeout": str(timeout_ms) },
            # Allow the server to hold the request for the full long polling timeout
            timeout = self.long_poll_timeout + self.timeout
        )
        response.raise_for_status()
        # The response is a URL-encoded list of the keys that have changed
        changed = urllib.parse.unquote(response.text.strip())
        return any(
            line.split(WORD_SEPARATOR)[:2] == [data_id, group]
            for line in changed.split(LINE_SEPARATOR)
            if line
        )

    async def _poll(self, data_id, group, md5):
        """
        Polls the document for changes until cancelled.
        """
        key = (data_id, group)
        while True:
            self._logger.debug("Starting long polling request for %s/%s", group, data_id)
            try:
                changed = await self._listen(data_id, group, md5)
                if not changed:
                    continue
                content = await self._current_content(data_id, group)
            except httpx.ReadTimeout:
                self._logger.info("Long polling request timed out for %s/%s - restarting", group, data_id)
                continue
            except httpx.HTTPError as exc:
                self._logger.warning("Error listening for %s/%s: %s", group, data_id, exc)
                await self._retry_sleep()
                continue
            next_md5 = content_md5(content)
            if next_md5 == md5:
                continue
            md5 = next_md5
            self._logger.info("Configuration changed for %s/%s", group, data_id)
            for on_change in list(self._listeners.get(key, [])):
                try:
                    on_change(self.namespace_id, group, data_id, content)
                except Exception:
                    self._logger.exception("Listener for %s/%s raised an error", group, data_id)

    async def listen_config(self, data_id: str, group: str, on_change: base.OnChange):
        key = (data_id, group)
        if key in self._listeners:
            self._listeners[key].append(on_change)
            return
        # Record the current state so that only later changes are reported
        content = await self._current_content(data_id, group)
        self._listeners[key] = [on_change]
        self._start_task(("listen", data_id, group), self._poll(data_id, group, content_md5(content)))
        self._logger.info("Listening for changes to %s/%s", group, data_id)

    async def cancel_listen_config(self, data_id: str, group: str, on_change: base.OnChange):
        key = (data_id, group)
        listeners = self._listeners.get(key, [])
        if on_change in listeners:
            listeners.remove(on_change)
        # The polling task is shared, so only stop it once nobody is listening
        if listeners:
            return
        self._listeners.pop(key, None)
        await self._stop_task(("listen", data_id, group))
        self._logger.info("Stopped listening for changes to %s/%s", group, data_id)

    @classmethod
    def from_options(cls, options: config.ConfigOptions) -> "ConfigClient":
        config.apply_log_level(options)
        return cls(
            options.endpoint,
            options.namespace_id,
            timeout = options.timeout,
            long_poll_timeout = options.long_poll_timeout_ms / 1000,
            username = options.username,
            password = options.password
        )


def parse_instance(data: t.Dict[str, t.Any]) -> model.Instance:
    """
    Converts a host from the Nacos API into an instance.
    """
    return model.Instance(
        ip = data["ip"],
        port = int(data["port"]),
        service_name = ungrouped_name(data.get("serviceName") or ""),
        instance_id = data.get("instanceId") or "",
        metadata = dict(data.get("metadata") or {}),
        weight = float(data.get("weight", 1.0)),
        healthy = bool(data.get("healthy", True)),
        enabled = bool(data.get("enabled", True)),
        ephemeral = bool(data.get("ephemeral", True)),
        cluster_name = data.get("clusterName") or ""
    )


def instances_key(instances: t.Iterable[model.Instance]):
    """
    Returns a value that compares equal for equivalent sets of instances.
    """
    return sorted(
        (
            i.ip,
            i.port,
            i.healthy,
            i.enabled,
            i.weight,
            sorted(i.metadata.items())
        )
        for i in instances
    )


class NamingClient(HttpClient, base.NamingClient):
    """
    Naming client that uses the Nacos HTTP API.

    Subscriptions poll the instance list and report when it changes. Ephemeral
    instances are kept alive with a heartbeat task per instance.
    """
    def __init__(
        self,
        endpoint: str,
        namespace_id: str,
        *,
        heartbeat_interval: float = 5,
        subscribe_interval: float = 10,
        **kwargs
    ):
        super().__init__(endpoint, namespace_id, **kwargs)
        self.heartbeat_interval = heartbeat_interval
        self.subscribe_interval = subscribe_interval
        self._subscribers: t.Dict[t.Tuple, t.List[base.SubscribeCallback]] = {}

    def _instance_params(self, params, **extra):
        return self._params(
            serviceName = params.service_name,
            groupName = params.group_name,
            namespaceId = self.namespace_id,
            clusterName = params.cluster_name,
            ip = params.ip,
            port = params.port,
            ephemeral = json.dumps(params.ephemeral),
            **extra
        )

    async def _register(self, params: model.RegisterInstanceParams):
        response = await self._client.post(
            "/nacos/v1/ns/instance",
            params = self._instance_params(
                params,
                weight = params.weight,
                enabled = json.dumps(params.enable),
                healthy = json.dumps(params.healthy),
                metadata = json.dumps(params.metadata)
            )
        )
        response.raise_for_status()
        return response.text.strip() == "ok"

    async def _beat(self, params: model.RegisterInstanceParams):
        """
        Sends heartbeats for the instance until cancelled.
        """
        beat = {
            "serviceName": grouped_name(params.service_name, params.group_name),
            "ip": params.ip,
            "port": params.port,
            "cluster": params.cluster_name,
            "weight": params.weight,
            "metadata": params.metadata,
            "scheduled": False,
        }
        interval = self.heartbeat_interval
        while True:
            await asyncio.sleep(interval)
            try:
                response = await self._client.put(
                    "/nacos/v1/ns/instance/beat",
                    params = self._params(
                        serviceName = beat["serviceName"],
                        groupName = params.group_name,
                        namespaceId = self.namespace_id,
                        ephemeral = "true",
                        beat = json.dumps(beat)
                    )
                )
                response.raise_for_status()
                result = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                self._logger.warning("Heartbeat failed for %s:%d: %s", params.ip, params.port, exc)
                continue
            if not isinstance(result, dict):
                self._logger.warning(
                    "Unexpected heartbeat response for %s:%d: %r",
                    params.ip,
                    params.port,
                    result
                )
                continue
            if result.get("code") == INSTANCE_NOT_FOUND:
                self._logger.info("Re-registering %s:%d after it was forgotten", params.ip, params.port)
                try:
                    await self._register(params)
                except httpx.HTTPError as exc:
                    self._logger.warning("Re-registration failed for %s:%d: %s", params.ip, params.port, exc)
            # The server may ask for a different interval
            interval = result.get("clientBeatInterval", self.heartbeat_interval * 1000) / 1000

    async def register_instance(self, params: model.RegisterInstanceParams) -> bool:
        registered = await self._register(params)
        if params.ephemeral:
            key = ("beat", params.service_name, params.group_name, params.ip, params.port)
            await self._stop_task(key)
            self._start_task(key, self._beat(params))
        return registered

    async def deregister_instance(self, params: model.DeregisterInstanceParams) -> bool:
        await self._stop_task(("beat", params.service_name, params.group_name, params.ip, params.port))
        response = await self._client.delete(
            "/nacos/v1/ns/instance",
            params = self._instance_params(params)
        )
        response.raise_for_status()
        return response.text.strip() == "ok"

    async def get_service(
        self,
        name: str,
        group: str,
        clusters: t.Sequence[str] = ()
    ) -> model.Service:
        response = await self._client.get(
            "/nacos/v1/ns/instance/list",
            params = self._params(
                serviceName = name,
                groupName = group,
                namespaceId = self.namespace_id,
                clusters = ",".join(clusters),
                healthyOnly = "false"
            )
        )
        response.raise_for_status()
        data = response.json()
        return model.Service(
            name = ungrouped_name(data.get("name") or name),
            group_name = group,
            hosts = [parse_instance(host) for host in data.get("hosts") or []]
        )

    def _notify(self, key, instances, error):
        for callback in list(self._subscribers.get(key, [])):
            try:
                callback(instances, error)
            except Exception:
                self._logger.exception("Subscriber for %s raised an error", key[1])

    async def _watch(self, key, known):
        """
        Polls the instances of the service until cancelled, reporting changes to
        every subscriber.
        """
        _, name, group, clusters = key
        while True:
            await asyncio.sleep(self.subscribe_interval)
            try:
                service = await self.get_service(name, group, clusters)
            except (httpx.HTTPError, ValueError) as exc:
                self._logger.warning("Error polling service %s: %s", name, exc)
                self._notify(key, [], exc)
                continue
            current = instances_key(service.hosts)
            if current == known:
                continue
            known = current
            self._logger.info("Instances changed for service %s", name)
            self._notify(key, service.hosts, None)

    async def subscribe(
        self,
        name: str,
        group: str,
        clusters: t.Sequence[str],
        callback: base.SubscribeCallback
    ):
        key = ("subscribe", name, group, tuple(clusters))
        if key in self._subscribers:
            self._subscribers[key].append(callback)
            return
        # Fetch the current state so that only later changes are reported
        service = await self.get_service(name, group, clusters)
        self._subscribers[key] = [callback]
        self._start_task(key, self._watch(key, instances_key(service.hosts)))
        self._logger.info("Subscribed to service %s", name)

    async def unsubscribe(
        self,
        name: str,
        group: str,
        clusters: t.Sequence[str],
        callback: base.SubscribeCallback
    ):
        key = ("subscribe", name, group, tuple(clusters))
        subscribers = self._subscribers.get(key, [])
        if callback in subscribers:
            subscribers.remove(callback)
        # The polling task is shared, so only stop it once nobody is subscribed
        if subscribers:
            return
        self._subscribers.pop(key, None)
        await self._stop_task(key)
        self._logger.info("Unsubscribed from service %s", name)

    @classmethod
    def from_options(cls, options: config.RegistryOptions) -> "NamingClient":
        config.apply_log_level(options)
        return cls(
            options.endpoint,
            options.namespace_id,
            timeout = options.timeout,
            heartbeat_interval = options.heartbeat_interval,
            subscribe_interval = options.subscribe_interval,
            username = options.username,
            password = options.password
        )
