import asyncio
import dataclasses
import json
import logging

import click

from .config import BridgeConfig
from .model import ServiceInstance
from .registry import Registry
from .source import ConfigSource


def _source(ctx) -> ConfigSource:
    options = ctx.obj["CONFIG"].source
    if options is None:
        raise click.UsageError("no source configuration given")
    return ConfigSource(options)


def _registry(ctx) -> Registry:
    options = ctx.obj["CONFIG"].registry
    if options is None:
        raise click.UsageError("no registry configuration given")
    return Registry(options)


def _echo_instances(instances):
    for instance in instances:
        click.echo(json.dumps(dataclasses.asdict(instance), sort_keys = True))


def _parse_metadata(items):
    metadata = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected KEY=VALUE, got '{item}'", param_hint = "--metadata")
        metadata[key] = value
    return metadata


@click.group()
@click.option("--config", type = click.Path(exists = True), help = "Path to configuration file")
@click.pass_context
def main(ctx, config):
    """
    Nacos configuration and service registry utilities.
    """
    ctx.ensure_object(dict)
    ctx.obj["CONFIG"] = BridgeConfig(_path = config)
    ctx.obj["CONFIG"].logging.apply()
    ctx.obj["LOGGER"] = logging.getLogger(__name__)


@main.command()
@click.pass_context
def get_config(ctx):
    """
    Print the configured document.
    """
    async def run():
        async with _source(ctx) as source:
            for kv in await source.load():
                click.echo(kv.value.decode())
    asyncio.run(run())


@main.command()
@click.option("--count", type = int, default = 0, help = "Exit after this many changes")
@click.pass_context
def watch_config(ctx, count):
    """
    Print the configured document each time it changes.
    """
    async def run():
        seen = 0
        async with _source(ctx) as source:
            async with await source.watch() as watcher:
                async for kvs in watcher:
                    for kv in kvs:
                        click.echo(kv.value.decode())
                    seen += 1
                    if count and seen >= count:
                        break
    asyncio.run(run())


def service_options(func):
    """
    Decorator adding the options that describe a service instance.
    """
    func = click.option("--name", required = True, help = "The service name")(func)
    func = click.option("--id", "instance_id", default = "", help = "The instance ID")(func)
    func = click.option("--version", default = "", help = "The service version")(func)
    func = click.option(
        "--endpoint",
        "endpoints",
        multiple = True,
        required = True,
        help = "An endpoint URL, e.g. grpc://10.0.0.2:9000"
    )(func)
    func = click.option(
        "--metadata",
        multiple = True,
        help = "Metadata for the instance as KEY=VALUE"
    )(func)
    return func


def _service(name, instance_id, version, endpoints, metadata):
    return ServiceInstance(
        id = instance_id or name,
        name = name,
        version = version,
        metadata = _parse_metadata(metadata),
        endpoints = list(endpoints)
    )


@main.command()
@service_options
@click.option(
    "--hold/--no-hold",
    default = False,
    help = "Keep the registration alive until interrupted, then deregister"
)
@click.pass_context
def register(ctx, name, instance_id, version, endpoints, metadata, hold):
    """
    Register a service instance.
    """
    service = _service(name, instance_id, version, endpoints, metadata)

    async def run():
        async with _registry(ctx) as registry:
            await registry.register(service)
            click.echo(f"registered {service.name}")
            if hold:
                try:
                    # Heartbeats are sent by the client until we are interrupted
                    await asyncio.Event().wait()
                finally:
                    await registry.deregister(service)
    asyncio.run(run())


@main.command()
@service_options
@click.pass_context
def deregister(ctx, name, instance_id, version, endpoints, metadata):
    """
    Deregister a service instance.
    """
    service = _service(name, instance_id, version, endpoints, metadata)

    async def run():
        async with _registry(ctx) as registry:
            await registry.deregister(service)
            click.echo(f"deregistered {service.name}")
    asyncio.run(run())


@main.command()
@click.argument("name")
@click.pass_context
def instances(ctx, name):
    """
    Print the instances of a service, one JSON document per line.
    """
    async def run():
        async with _registry(ctx) as registry:
            _echo_instances(await registry.get_service(name))
    asyncio.run(run())


@main.command()
@click.argument("name")
@click.option("--count", type = int, default = 0, help = "Exit after this many changes")
@click.pass_context
def watch_service(ctx, name, count):
    """
    Print the instances of a service each time they change.
    """
    async def run():
        seen = 0
        async with _registry(ctx) as registry:
            async with await registry.watch(name) as watcher:
                async for instances in watcher:
                    _echo_instances(instances)
                    click.echo("---")
                    seen += 1
                    if count and seen >= count:
                        break
    asyncio.run(run())
