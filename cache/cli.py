"""
Command line tools for the persisted zpool cache.
"""
import asyncio
import json
from typing import Optional

import click
import structlog

from config.logging import configure_logging
from config.settings import CacheSettings
from . import build_store

logger = structlog.get_logger()


@click.group()
@click.option('--log-level', type=str, default=None, help='Override ZPOOL_CACHE_LOG_LEVEL')
@click.option('--storage', type=click.Choice(['file', 'redis', 'memory']), default=None,
              help='Durable storage backend')
@click.option('--storage-path', type=click.Path(dir_okay=False), default=None,
              help='Snapshot file for the file backend')
@click.option('--redis-url', type=str, default=None, help='Redis URL for the redis backend')
@click.pass_context
def cli(ctx, log_level: Optional[str], storage: Optional[str], storage_path: Optional[str],
        redis_url: Optional[str]):
    """zpool client cache"""
    overrides = {
        'log_level': log_level,
        'storage_backend': storage,
        'storage_path': storage_path,
        'redis_url': redis_url,
    }
    settings = CacheSettings(**{k: v for k, v in overrides.items() if v is not None})
    configure_logging(settings.log_level, settings.json_logs)
    ctx.obj = settings


@cli.command()
@click.pass_obj
def stats(settings: CacheSettings):
    """Show statistics of the persisted cache"""
    store = build_store(settings)
    click.echo(json.dumps(store.get_stats(), indent=2, default=str))


@cli.command()
@click.option('--pattern', type=str, default=None, help='Remove keys containing this text')
@click.option('--prefix', type=str, default=None, help='Remove keys starting with this text')
@click.pass_obj
def clear(settings: CacheSettings, pattern: Optional[str], prefix: Optional[str]):
    """Invalidate the whole cache or a subset of keys"""
    if pattern is not None and prefix is not None:
        raise click.UsageError("--pattern and --prefix are mutually exclusive")
    if pattern == "" or prefix == "":
        raise click.BadParameter("must not be empty; omit it to clear everything",
                                 param_hint="--pattern" if pattern == "" else "--prefix")

    store = build_store(settings)
    if pattern is not None:
        removed = store.clear_pattern(pattern)
    elif prefix is not None:
        removed = store.clear_prefix(prefix)
    else:
        removed = store.clear()
    click.echo(f"Removed {removed} entries")


@cli.command()
@click.option('--account', type=str, required=True, help='Connected wallet address')
@click.option('--rpc-url', type=str, default=None, help='HTTP JSON-RPC endpoint')
@click.option('--ws-url', type=str, default=None, help='Websocket endpoint for log subscriptions')
@click.option('--ledger', type=str, default=None, help='Ledger contract address')
@click.option('--duration', type=float, default=None, help='Stop after this many seconds')
@click.pass_obj
def watch(settings: CacheSettings, account: str, rpc_url: Optional[str], ws_url: Optional[str],
          ledger: Optional[str], duration: Optional[float]):
    """Watch ledger events and invalidate the persisted cache"""
    from watcher.session import is_address

    if not is_address(account):
        raise click.BadParameter(f"not an address: {account}", param_hint='--account')
    if ledger is not None and not is_address(ledger):
        raise click.BadParameter(f"not an address: {ledger}", param_hint='--ledger')

    updates = {'rpc_url': rpc_url, 'ws_url': ws_url, 'ledger_address': ledger}
    settings = settings.model_copy(update={k: v for k, v in updates.items() if v is not None})
    if not settings.rpc_url:
        raise click.UsageError("An RPC endpoint is required (--rpc-url or ZPOOL_CACHE_RPC_URL)")

    click.echo(f"Watching ledger {settings.ledger_address} for {account}")
    try:
        asyncio.run(_watch(settings, account, duration))
    except KeyboardInterrupt:
        click.echo("Stopped")


async def _watch(settings: CacheSettings, account: str, duration: Optional[float]) -> None:
    from chain.rpc import JsonRpcProvider
    from watcher.session import CacheSession

    store = build_store(settings)
    async with JsonRpcProvider(settings.rpc_url, ws_url=settings.ws_url) as provider:
        session = CacheSession.from_settings(store, provider, settings)
        try:
            await session.connect(account)
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            logger.info("watch_stopping", stats=session.get_stats()['watcher'])
            await session.close()
            await store.close()


def main():
    cli(prog_name='zpool-cache')


if __name__ == '__main__':
    main()
