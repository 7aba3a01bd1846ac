"""Shop connection commands for catalogsync CLI.

Commands:
- configure: Store the shop domain, access token and sync settings
- test-connection: Check credentials against the remote API
"""

from __future__ import annotations

import os
import sys

import click

from catalogsync.client.cli.config import (
    TOKEN_ENV_VAR,
    build_settings,
    get_config_file,
    load_config,
    save_config,
    setting_names,
)
from catalogsync.core.config import ConfigError, ShopConfig


@click.command()
@click.option("--shop-domain", default=None, help="Shop domain (e.g., example.myshopify.com).")
@click.option("--token", default=None, help="Admin API access token.")
@click.option("--api-version", default=None, help="Admin API version (e.g., 2023-04).")
@click.option(
    "--set",
    "overrides",
    multiple=True,
    metavar="NAME=VALUE",
    help="Store a sync setting (repeatable), e.g. --set page_size=100.",
)
def configure(
    shop_domain: str | None,
    token: str | None,
    api_version: str | None,
    overrides: tuple[str, ...],
) -> None:
    """Configure the shop connection and sync settings.

    Values not given on the command line keep their stored value. The access
    token is prompted for when neither stored nor set in the environment.
    """
    config = load_config()

    if shop_domain is None and not config.get("shop_domain"):
        shop_domain = click.prompt("Shop domain (e.g., example.myshopify.com)")
    if shop_domain is not None:
        # Normalize the same way the client does
        config["shop_domain"] = ShopConfig(shop_domain=shop_domain, access_token="").shop_domain

    if token is None and not config.get("access_token") and not os.environ.get(TOKEN_ENV_VAR):
        token = click.prompt("Admin API access token", hide_input=True)
    if token is not None:
        config["access_token"] = token

    if api_version is not None:
        config["api_version"] = api_version

    known = setting_names()
    for item in overrides:
        name, sep, value = item.partition("=")
        name = name.strip()
        if not sep or name not in known:
            click.echo(f"Error: Invalid setting '{item}'.", err=True)
            click.echo(f"Known settings: {', '.join(known)}")
            sys.exit(1)
        config[name] = value.strip()

    try:
        build_settings(config)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    save_config(config)
    click.echo(f"Configuration saved to {get_config_file()}")
    click.echo(f"Shop: {config['shop_domain']}")


@click.command("test-connection")
def test_connection() -> None:
    """Check the stored credentials against the remote API."""
    from catalogsync.client.cli.sync import open_engine

    with open_engine() as engine:
        click.echo(f"Connecting to {engine.client.config.shop_domain}...")
        result = engine.test_connection()

    if not result["success"]:
        click.echo(f"Error: Connection failed: {result['error']}", err=True)
        sys.exit(1)

    shop = result["shop"]
    click.echo("Connection successful!")
    click.echo(f"Shop: {shop.get('name', '?')}")
    click.echo(f"Domain: {shop.get('domain', '?')}")
    if shop.get("plan_name"):
        click.echo(f"Plan: {shop['plan_name']}")
