import asyncio
import logging
import sys

import click
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.live import Live

from shared.config import AppConfig
from shared.constants import DEFAULT_PROGRESS_BAR_WIDTH, VOLUME_STEP
from shared.logging_setup import setup_logging
from shared.models import Track, format_time
from player.catalog import CatalogClient
from player.errors import CatalogError
from player.like_manager import LikeState
from player.session import PlayerSession, RepeatMode, Status

console = Console()
logger = logging.getLogger(__name__)

KEY_HELP = "[p] play/pause  [n] next  [b] back  [f 0.5] seek  [s] shuffle  [r] repeat  [l] like  [m] mute  [+/-] volume  [q] quit"


def render_now_playing(session: PlayerSession) -> Panel:
    """Now-playing panel for the current session state."""
    track = session.current_track
    state = session.state
    if track is None:
        return Panel(Text("Select a song to start playing", style="dim"), title="Now Playing")

    heading = Text()
    heading.append(track.title, style="bold white")
    heading.append(f"  {track.artist}", style="green")
    if track.album:
        heading.append(f" - {track.album}", style="yellow")
    like = session.like_state
    heading.append("  ♥" if like is LikeState.LIKED else "  ♡", style="red" if like is LikeState.LIKED else "dim")

    filled = int(state.progress * DEFAULT_PROGRESS_BAR_WIDTH)
    progress = Text()
    progress.append(f"{format_time(state.current_time)} ", style="cyan")
    progress.append("━" * filled, style="blue")
    progress.append("─" * (DEFAULT_PROGRESS_BAR_WIDTH - filled), style="grey50")
    progress.append(f" {format_time(state.duration)}", style="cyan")

    status = Text()
    status.append(f"{state.status.value}", style="bold")
    status.append(f"  shuffle:{'on' if state.shuffled else 'off'}")
    status.append(f"  repeat:{state.repeat_mode.value}")
    status.append(f"  volume:{'muted' if state.muted else state.volume}")

    parts = [heading, progress, status]
    if session.last_event is not None:
        parts.append(Text(session.last_event.message, style="red"))
    parts.append(Text(KEY_HELP, style="dim"))
    return Panel(Group(*parts), title="Now Playing")


def handle_command(session: PlayerSession, line: str) -> bool:
    """Apply one interactive command line. Returns False when the user quits."""
    parts = line.strip().split()
    if not parts:
        return True
    key, args = parts[0].lower(), parts[1:]

    if key == "q":
        return False
    if key == "p":
        session.toggle()
    elif key == "n":
        session.next()
    elif key == "b":
        session.previous()
    elif key == "s":
        session.toggle_shuffle()
    elif key == "r":
        session.cycle_repeat()
    elif key == "l":
        session.toggle_like()
    elif key == "m":
        session.toggle_mute()
    elif key == "+":
        session.set_volume(session.state.volume + VOLUME_STEP)
    elif key == "-":
        session.set_volume(session.state.volume - VOLUME_STEP)
    elif key == "f" and args:
        try:
            session.seek(float(args[0]))
        except ValueError:
            console.print(f"[yellow]Not a number: {args[0]}[/yellow]")
    else:
        console.print(f"[yellow]Unknown command: {line.strip()}[/yellow]")
    return True


def _client(ctx: click.Context, require_login: bool = False) -> CatalogClient:
    opts = ctx.obj
    client = CatalogClient(opts["api_url"], timeout=opts["config"].network_timeout)
    if opts["username"]:
        client.login(opts["username"], opts["password"] or "")
    elif require_login:
        raise click.UsageError("This command needs --username/--password (or MELODYSTREAM_USERNAME).")
    return client


def _track_table(title: str, tracks) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="bold white")
    table.add_column("Artist", style="green")
    table.add_column("Album", style="yellow")
    table.add_column("Duration", style="magenta")
    for t in tracks:
        table.add_row(t.id[:8], t.title, t.artist, t.album or "", format_time(t.duration))
    return table


@click.group()
@click.option('--api-url', envvar='MELODYSTREAM_API_URL', default=None, help="Server base URL.")
@click.option('--username', envvar='MELODYSTREAM_USERNAME', default=None)
@click.option('--password', envvar='MELODYSTREAM_PASSWORD', default=None)
@click.option('-v', '--verbose', is_flag=True, help="Debug logging.")
@click.pass_context
def cli(ctx, api_url, username, password, verbose):
    """🎵 MelodyStream player"""
    config = AppConfig.from_env()
    setup_logging(logging.DEBUG if verbose else logging.WARNING, config.log_file)
    ctx.obj = {
        "config": config,
        "api_url": api_url or config.api_url,
        "username": username,
        "password": password,
    }


@cli.command()
@click.pass_context
def songs(ctx):
    """List songs in the catalog."""
    try:
        tracks = _client(ctx).get_songs()
    except CatalogError as e:
        console.print(f"[red]Failed to load songs: {e}[/red]")
        sys.exit(1)
    if not tracks:
        console.print("[yellow]Catalog is empty.[/yellow]")
        return
    console.print(_track_table(f"Songs ({len(tracks)})", tracks))


@cli.command()
@click.pass_context
def playlists(ctx):
    """List your playlists."""
    try:
        items = _client(ctx, require_login=True).get_playlists()
    except CatalogError as e:
        console.print(f"[red]Failed to load playlists: {e}[/red]")
        sys.exit(1)
    table = Table(title=f"Playlists ({len(items)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold white")
    table.add_column("Description")
    table.add_column("Public")
    for p in items:
        table.add_row(p.id[:8], p.name, p.description or "", "yes" if p.is_public else "no")
    console.print(table)


@cli.command()
@click.pass_context
def liked(ctx):
    """List your liked songs."""
    try:
        items = _client(ctx, require_login=True).get_liked_songs()
    except CatalogError as e:
        console.print(f"[red]Failed to load liked songs: {e}[/red]")
        sys.exit(1)
    console.print(_track_table(f"Liked Songs ({len(items)})", [i.song for i in items if i.song]))


@cli.command()
@click.argument('song_id')
@click.pass_context
def like(ctx, song_id):
    """Add a song to your liked songs."""
    try:
        _client(ctx, require_login=True).like_song(song_id)
    except CatalogError as e:
        console.print(f"[red]Failed to like song: {e}[/red]")
        sys.exit(1)
    console.print("[green]✓ Song added to liked songs[/green]")


@cli.command()
@click.argument('song_id')
@click.pass_context
def unlike(ctx, song_id):
    """Remove a song from your liked songs."""
    try:
        _client(ctx, require_login=True).unlike_song(song_id)
    except CatalogError as e:
        console.print(f"[red]Failed to unlike song: {e}[/red]")
        sys.exit(1)
    console.print("[green]✓ Song removed from liked songs[/green]")


@cli.command()
@click.argument('query', required=False)
@click.option('--playlist', 'playlist_id', default=None, help="Play a playlist by ID.")
@click.option('--liked', 'from_liked', is_flag=True, help="Play your liked songs.")
@click.option('--shuffle', is_flag=True)
@click.option('--repeat', type=click.Choice([m.value for m in RepeatMode]), default=RepeatMode.NONE.value)
@click.pass_context
def play(ctx, query, playlist_id, from_liked, shuffle, repeat):
    """Play music. Optionally filter the catalog by QUERY."""
    try:
        client = _client(ctx, require_login=bool(playlist_id or from_liked))
        if playlist_id:
            tracks = [entry.song for entry in client.get_playlist_songs(playlist_id) if entry.song]
        elif from_liked:
            tracks = [item.song for item in client.get_liked_songs() if item.song]
        else:
            tracks = client.get_songs()
    except CatalogError as e:
        console.print(f"[red]Failed to load songs: {e}[/red]")
        sys.exit(1)

    if query:
        q = query.lower()
        tracks = [t for t in tracks if q in t.title.lower() or q in t.artist.lower()]
    if not tracks:
        console.print("[yellow]No matching tracks found.[/yellow]")
        return

    try:
        asyncio.run(_run_player(client, tracks, shuffle, RepeatMode(repeat), ctx.obj["config"].default_volume))
    except OSError as e:
        console.print(Panel.fit(
            "[red bold]Missing System Dependency: libmpv[/red bold]\n\n"
            f"{e}\n\n"
            "• Ubuntu/Debian: [green]sudo apt install libmpv2[/green]\n"
            "• Fedora: [green]sudo dnf install mpv-libs[/green]\n"
            "• Arch: [green]sudo pacman -S mpv[/green]",
            border_style="red"
        ))
        sys.exit(1)


def _stdin_reader(loop: asyncio.AbstractEventLoop, stream, commands: asyncio.Queue):
    """Reader callback queueing one command line per call; detaches at EOF."""
    def on_readable():
        line = stream.readline()
        if not line:
            # Closed or exhausted input stays readable forever
            loop.remove_reader(stream.fileno())
            return
        commands.put_nowait(line)
    return on_readable


async def _run_player(client: CatalogClient, tracks: list[Track], shuffle: bool,
                      repeat: RepeatMode, volume: int) -> None:
    # Imported here so listing commands work without libmpv installed
    from player.engine import PlaybackEngine

    loop = asyncio.get_running_loop()
    engine = PlaybackEngine(loop)
    session = PlayerSession(
        store=client,
        user_id=client.user.id if client.user else None,
        media=engine,
        volume=volume,
    )
    engine.attach(session)
    session.set_queue(tracks)
    if shuffle:
        session.toggle_shuffle()
    while session.state.repeat_mode is not repeat:
        session.cycle_repeat()

    commands: asyncio.Queue = asyncio.Queue()
    loop.add_reader(sys.stdin.fileno(), _stdin_reader(loop, sys.stdin, commands))
    try:
        with Live(render_now_playing(session), console=console, refresh_per_second=4) as live:
            session.add_change_callback(lambda: live.update(render_now_playing(session)))
            session.play_track(tracks[0].id)
            while session.state.status is not Status.IDLE:
                try:
                    line = await asyncio.wait_for(commands.get(), timeout=0.25)
                except asyncio.TimeoutError:
                    continue
                if not handle_command(session, line):
                    break
    finally:
        loop.remove_reader(sys.stdin.fileno())
        engine.stop()

    event = session.consume_event()
    if event is not None:
        console.print(f"[red]{event.message}[/red]")
    console.print("[yellow]Stopped.[/yellow]")


if __name__ == '__main__':
    cli()
