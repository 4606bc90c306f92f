"""
In-memory stand-ins for the Nacos clients.
"""

import asyncio
import typing as t

from nacosbridge import clients, model


class FakeConfigClient(clients.ConfigClient):
    """
    In-memory config client.
    """
    def __init__(self, documents = None):
        self.documents = dict(documents or {})
        self.listeners = []
        self.cancelled = []
        self.started = 0
        self.stopped = 0
        self.fail_get = None
        self.fail_listen = None
        self.fail_cancel = None

    async def startup(self):
        self.started += 1

    async def shutdown(self):
        self.stopped += 1

    async def get_config(self, data_id, group):
        if self.fail_get:
            raise self.fail_get
        return self.documents[(data_id, group)]

    async def listen_config(self, data_id, group, on_change):
        if self.fail_listen:
            raise self.fail_listen
        self.listeners.append(on_change)

    async def cancel_listen_config(self, data_id, group, on_change):
        self.cancelled.append((data_id, group))
        self.listeners.remove(on_change)
        if self.fail_cancel:
            raise self.fail_cancel

    def fire(self, namespace, group, data_id, content):
        """
        Invokes every listener, regardless of the key it listened to.
        """
        for on_change in list(self.listeners):
            on_change(namespace, group, data_id, content)


class FakeNamingClient(clients.NamingClient):
    """
    In-memory naming client.
    """
    def __init__(self):
        self.instances: t.Dict[t.Tuple[str, str], t.List[model.Instance]] = {}
        self.registered = []
        self.deregistered = []
        self.subscriptions = {}
        self.unsubscribed = []
        self.started = 0
        self.stopped = 0
        self.fail_register_port = None
        self.fail_subscribe = None
        self.fail_get = None
        self.fail_unsubscribe = None

    async def startup(self):
        self.started += 1

    async def shutdown(self):
        self.stopped += 1

    async def register_instance(self, params):
        if params.port == self.fail_register_port:
            raise RuntimeError("connection refused")
        self.registered.append(params)
        hosts = self.instances.setdefault((params.service_name, params.group_name), [])
        hosts.append(
            model.Instance(
                ip = params.ip,
                port = params.port,
                service_name = params.service_name,
                instance_id = (
                    f"{params.ip}#{params.port}#{params.cluster_name}#"
                    f"{params.group_name}@@{params.service_name}"
                ),
                metadata = dict(params.metadata),
                weight = params.weight,
                healthy = params.healthy,
                enabled = params.enable,
                ephemeral = params.ephemeral,
                cluster_name = params.cluster_name
            )
        )
        return True

    async def deregister_instance(self, params):
        self.deregistered.append(params)
        key = (params.service_name, params.group_name)
        self.instances[key] = [
            i
            for i in self.instances.get(key, [])
            if (i.ip, i.port) != (params.ip, params.port)
        ]
        return True

    async def get_service(self, name, group, clusters = ()):
        if self.fail_get:
            raise self.fail_get
        return model.Service(
            name = name,
            group_name = group,
            hosts = list(self.instances.get((name, group), []))
        )

    async def subscribe(self, name, group, clusters, callback):
        if self.fail_subscribe:
            raise self.fail_subscribe
        self.subscriptions.setdefault((name, group), []).append(callback)

    async def unsubscribe(self, name, group, clusters, callback):
        self.unsubscribed.append((name, group, list(clusters)))
        self.subscriptions[(name, group)].remove(callback)
        if self.fail_unsubscribe:
            raise self.fail_unsubscribe

    def push(self, name, group, hosts = None, error = None):
        """
        Delivers the given hosts, or the current hosts, to every subscriber for the service.
        """
        if hosts is None:
            hosts = list(self.instances.get((name, group), []))
        for callback in list(self.subscriptions.get((name, group), [])):
            callback(hosts, error)


async def settle():
    """
    Lets any scheduled callbacks and tasks run.
    """
    for _ in range(5):
        await asyncio.sleep(0)
