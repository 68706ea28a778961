"""Command-line entry point for awsreaper."""

import json
import logging
import sys
from typing import Any, Dict, Optional

import click
import uvicorn

from .config import Config, load_config
from .durations import parse_duration
from .errors import ConfigError, InvalidToken, MalformedState
from .reaper import Reaper
from .scheduler import Scheduler
from .statefile import parse_line
from .token import ActionToken, JobType, tokenize, untokenize

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _json_output(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=None, sort_keys=True))


def _load(config_path: Optional[str], dry_run: bool) -> Config:
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e))
    if dry_run:
        config.dry_run = True
    configure_logging(config.log_level)
    return config


def _build_reaper(config: Config) -> Reaper:
    reaper = Reaper(config)
    if config.load_from_state_file and config.state_file:
        reaper.load_state(config.state_file)
    return reaper


@click.group()
def main():
    """awsreaper - finds abandoned AWS resources and reaps them."""


@main.command()
@click.option('--config', 'config_path', envvar='REAPER_CONFIG', help='Config file (YAML or JSON)')
@click.option('--dry-run', is_flag=True, help='Only log what would be changed')
@click.option('--no-server', is_flag=True, help='Do not serve the action endpoint')
def run(config_path, dry_run, no_server):
    """Reap on a schedule and serve the action endpoint."""
    config = _load(config_path, dry_run)
    reaper = _build_reaper(config)
    scheduler = Scheduler(reaper, config.interval, config.prices_interval)
    scheduler.start()

    try:
        if no_server:
            while not scheduler.stop_event.wait(60):
                pass
        else:
            from .api import create_app
            uvicorn.run(create_app(reaper), host=config.http.listen_host, port=config.http.listen_port)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
    finally:
        scheduler.stop(timeout=5)
        reaper.shutdown(wait=False)


@main.command()
@click.option('--config', 'config_path', envvar='REAPER_CONFIG', help='Config file (YAML or JSON)')
@click.option('--dry-run', is_flag=True, help='Only log what would be changed')
def once(config_path, dry_run):
    """Run a single reap cycle and print a summary."""
    config = _load(config_path, dry_run)
    reaper = _build_reaper(config)
    reaper.refresh_prices()
    try:
        result = reaper.run()
        result.wait()
    finally:
        reaper.shutdown()

    _json_output({
        "dry_run": config.dry_run,
        "filtered": len(result.filtered),
        "owner_batches": {owner: len(resources) for owner, resources in result.owner_batches.items()},
        "individual": len(result.individual),
        "counts": {f"{region}/{kind.stat_name}": n for (region, kind), n in result.counts.items()},
        "resources": [
            {"region": r.region, "id": r.id, "kind": r.kind.value, "owner": r.owner,
             "state": r.reaper_state.serialize()}
            for r in result.filtered
        ],
    })


@main.group()
def token():
    """Create and check action tokens."""


def _secret(config_path: Optional[str], secret: Optional[str]) -> str:
    if secret:
        return secret
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e))
    if not config.http.token_secret:
        raise click.ClickException("No token secret: pass --secret or set http.token_secret")
    return config.http.token_secret


@token.command('make')
@click.argument('action', type=click.Choice([j.value for j in JobType]))
@click.argument('region')
@click.argument('resource_id')
@click.option('--duration', help='Ignore duration for delay tokens, e.g. 72h')
@click.option('--scale-down', help='Scale-down cron for schedule tokens')
@click.option('--scale-up', help='Scale-up cron for schedule tokens')
@click.option('--secret', envvar='REAPER_TOKEN_SECRET', help='Token secret')
@click.option('--config', 'config_path', envvar='REAPER_CONFIG', help='Config file (YAML or JSON)')
def token_make(action, region, resource_id, duration, scale_down, scale_up, secret, config_path):
    """Print a signed token."""
    job = JobType(action)
    params = {}
    if job is JobType.DELAY:
        if not duration:
            raise click.UsageError("delay tokens need --duration")
        try:
            parse_duration(duration)
        except ValueError as e:
            raise click.UsageError(str(e))
        params["duration"] = duration
    if job is JobType.SCHEDULE:
        if not scale_down or not scale_up:
            raise click.UsageError("schedule tokens need --scale-down and --scale-up")
        params.update({"scale_down": scale_down, "scale_up": scale_up})

    click.echo(tokenize(_secret(config_path, secret), ActionToken(job, region, resource_id, params)))


@token.command('verify')
@click.argument('text')
@click.option('--secret', envvar='REAPER_TOKEN_SECRET', help='Token secret')
@click.option('--config', 'config_path', envvar='REAPER_CONFIG', help='Config file (YAML or JSON)')
def token_verify(text, secret, config_path):
    """Verify a token and print its contents."""
    try:
        action_token = untokenize(_secret(config_path, secret), text)
    except InvalidToken as e:
        click.echo(f"Invalid token: {e}", err=True)
        sys.exit(1)
    _json_output({
        "action": action_token.action.value,
        "region": action_token.region,
        "id": action_token.id,
        "params": action_token.params,
        "issued_at": action_token.issued_at,
    })


@main.group()
def state():
    """Inspect state files."""


@state.command('show')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
def state_show(path):
    """Print every state in a state file."""
    with open(path, "r", encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                region, resource_id, saved = parse_line(line)
            except MalformedState as e:
                click.echo(f"line {number}: {e}", err=True)
                continue
            click.echo(f"{region}\t{resource_id}\t{saved.state}\t"
                       f"{saved.entered.isoformat()}\t{saved.until.isoformat()}")


if __name__ == '__main__':
    main()
