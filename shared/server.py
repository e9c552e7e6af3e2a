"""
Server management commands: database setup, sample data and the API server.
"""

import logging
import sys

import click
from rich.console import Console
from werkzeug.security import generate_password_hash

from shared.api import start_api
from shared.config import AppConfig
from shared.database import ConflictError, DatabaseManager
from shared.logging_setup import setup_logging

console = Console()
logger = logging.getLogger(__name__)

SAMPLE_SONGS = [
    {"title": "Morning Drive", "artist": "SoundHelix", "album": "Examples Vol. 1", "duration": 372,
     "audio_url": "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-1.mp3"},
    {"title": "Night Signals", "artist": "SoundHelix", "album": "Examples Vol. 1", "duration": 425,
     "audio_url": "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-2.mp3"},
    {"title": "Glass Harbour", "artist": "SoundHelix", "album": "Examples Vol. 1", "duration": 344,
     "audio_url": "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-3.mp3"},
    {"title": "Paper Lanterns", "artist": "SoundHelix", "album": "Examples Vol. 2", "duration": 302,
     "audio_url": "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-4.mp3"},
    {"title": "Low Tide", "artist": "SoundHelix", "album": "Examples Vol. 2", "duration": 353,
     "audio_url": "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-5.mp3"},
    {"title": "Last Light", "artist": "SoundHelix", "album": "Examples Vol. 2", "duration": 301,
     "audio_url": "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-6.mp3"},
]


def seed_sample_data(db: DatabaseManager, reset: bool = False) -> int:
    """
    Load the sample catalog plus a demo user and an admin user.
    Does nothing if songs already exist (unless ``reset``). Returns songs added.
    """
    if reset:
        db.clear_all()
    elif db.get_all_songs():
        return 0

    for username, password, is_admin in (("demo", "password123", False), ("admin", "admin123", True)):
        try:
            db.create_user(username, f"{username}@melodystream.local",
                           generate_password_hash(password), is_admin=is_admin)
        except ConflictError:
            logger.info("User %s already exists", username)

    for song in SAMPLE_SONGS:
        db.create_song(**song)
    return len(SAMPLE_SONGS)


@click.group()
@click.option('-v', '--verbose', is_flag=True, help="Debug logging.")
@click.pass_context
def cli(ctx, verbose):
    """MelodyStream server"""
    config = AppConfig.from_env()
    setup_logging(logging.DEBUG if verbose else logging.INFO, config.log_file)
    ctx.obj = config


def _db(config: AppConfig) -> DatabaseManager:
    return DatabaseManager(str(config.resolved_database_path))


@cli.command('init-db')
@click.pass_obj
def init_db(config):
    """Create the database schema."""
    db = _db(config)
    console.print(f"[green]✓ Database ready at {db.db_path}[/green]")


@cli.command()
@click.option('--reset', is_flag=True, help="Wipe existing data first.")
@click.pass_obj
def seed(config, reset):
    """Load sample songs and demo accounts."""
    added = seed_sample_data(_db(config), reset=reset)
    if added:
        console.print(f"[green]✓ Added {added} sample songs (users: demo/password123, admin/admin123)[/green]")
    else:
        console.print("[yellow]Catalog already has songs; use --reset to start over.[/yellow]")


@cli.command('create-user')
@click.argument('username')
@click.argument('email')
@click.password_option()
@click.option('--admin', is_flag=True)
@click.pass_obj
def create_user(config, username, email, password, admin):
    """Create an account."""
    try:
        _db(config).create_user(username, email, generate_password_hash(password), is_admin=admin)
    except ConflictError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]✓ Created {'admin ' if admin else ''}user {username}[/green]")


@cli.command()
@click.option('--host', default=None)
@click.option('--port', type=int, default=None)
@click.pass_obj
def serve(config, host, port):
    """Run the REST API server."""
    if host:
        config.host = host
    if port:
        config.port = port
    start_api(config)


if __name__ == '__main__':
    cli()
