"""
Discord embeds for the music bot.
"""
import discord
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from config import Config
from player.errors import FetchKind, MusicError, RejectionKind, ResolutionKind
from player.models import EventKind, HistoryEntry, QueueEntry, SessionEvent

if TYPE_CHECKING:
    from player.session import PlaybackSession
    from utils.cache import CacheEntry, CleanResult


ERROR_MESSAGES = {
    ResolutionKind.NO_RESULTS: "No results found.",
    ResolutionKind.INVALID_INPUT: "That doesn't look like something I can play.",
    ResolutionKind.AGE_RESTRICTED: "That video is age-restricted.",
    ResolutionKind.UNAVAILABLE: "That video is unavailable.",
    ResolutionKind.EXTERNAL_SERVICE: "Couldn't read that Spotify link.",
    RejectionKind.QUEUE_FULL: "The queue is full.",
    RejectionKind.TOO_LONG: "That song is too long.",
    RejectionKind.TOO_LARGE: "That song is too large to download.",
    RejectionKind.DUPLICATE: "That song is already in the queue.",
    FetchKind.NETWORK: "Download failed.",
    FetchKind.UNAVAILABLE: "The video is unavailable.",
    FetchKind.AGE_RESTRICTED: "The video is age-restricted.",
    FetchKind.TOO_LARGE: "The file is too large.",
    FetchKind.TOO_LONG: "The song is too long.",
    FetchKind.DECODE: "Couldn't prepare the audio.",
}


def format_duration(seconds: int) -> str:
    """Format seconds to MM:SS or HH:MM:SS."""
    if seconds is None or seconds == 0:
        return "00:00"

    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def parse_timestamp(text: str) -> Optional[int]:
    """Parse "SS", "MM:SS" or "HH:MM:SS" into seconds. None if malformed."""
    parts = (text or "").strip().split(":")
    if not 1 <= len(parts) <= 3 or not all(p.strip().isdigit() for p in parts):
        return None
    seconds = 0
    for part in parts:
        seconds = seconds * 60 + int(part)
    return seconds


def format_size(size_bytes: float) -> str:
    """Human readable byte count."""
    size = float(size_bytes or 0)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def describe_error(error: MusicError) -> str:
    """User facing text for a playback error."""
    message = ERROR_MESSAGES.get(error.kind, "Something went wrong.")
    if error.kind is RejectionKind.QUEUE_FULL or error.kind is RejectionKind.DUPLICATE:
        return f"{message} {error.detail}".strip()
    if error.detail and error.kind is not ResolutionKind.EXTERNAL_SERVICE:
        return f"{message}\n`{error.detail[:200]}`"
    return message


def create_now_playing_embed(entry: QueueEntry, session: Optional["PlaybackSession"] = None) -> discord.Embed:
    """Create a 'Now Playing' embed."""
    embed = discord.Embed(
        title="🎵 Now Playing",
        description=f"**[{entry.title}]({entry.source_url})**",
        color=Config.COLOR_PRIMARY
    )
    embed.add_field(name="Duration", value=format_duration(entry.duration), inline=True)
    embed.add_field(name="Requested by", value=entry.requester_name, inline=True)

    if session is not None:
        if entry.duration:
            embed.description += (
                f"\n\n{create_progress_bar(session.position, entry.duration)} "
                f"{format_duration(session.position)} / {format_duration(entry.duration)}"
            )
        embed.add_field(name="Loop", value="🔁 On" if session.loop_enabled else "Off", inline=True)
        footer_parts = [f"🔊 {round(session.volume * 100)}%", f"{len(session.queue)} in queue"]
        if session.is_paused:
            footer_parts.insert(0, "⏸️ Paused")
        embed.set_footer(text=" • ".join(footer_parts))

    embed.set_thumbnail(url=f"https://i.ytimg.com/vi/{entry.id}/hqdefault.jpg")
    return embed


def create_progress_bar(current: int, total: int, length: int = 15) -> str:
    """Create a visual progress bar."""
    if not total:
        return "▱" * length

    filled = max(0, min(length, int((current / total) * length)))
    empty = length - filled

    bar = "▰" * filled + "▱" * empty
    return f"`{bar}`"


def create_status_embed(event: SessionEvent) -> discord.Embed:
    """Now playing embed refreshed in place, with a progress bar."""
    entry = event.entry
    embed = create_now_playing_embed(entry)
    elapsed = event.elapsed or 0
    if entry.duration:
        embed.description += (
            f"\n\n{create_progress_bar(elapsed, entry.duration)} "
            f"{format_duration(elapsed)} / {format_duration(entry.duration)}"
        )
    embed.set_footer(text="⏸️ Paused" if event.paused else "Auto-updating...")
    return embed


def create_queue_embed(
    queue: List[QueueEntry],
    current: Optional[QueueEntry],
    page: int = 1,
    per_page: int = 10
) -> discord.Embed:
    """Create a queue display embed with pagination."""
    embed = discord.Embed(
        title="📜 Music Queue",
        color=Config.COLOR_PRIMARY
    )

    if current:
        embed.add_field(
            name="▶️ Now Playing",
            value=f"**{current.title}** - {format_duration(current.duration)}",
            inline=False
        )

    if len(queue) == 0:
        embed.add_field(
            name="Up Next",
            value="*Queue is empty. Use `/play` to add songs!*",
            inline=False
        )
    else:
        total_pages = (len(queue) + per_page - 1) // per_page
        page = max(1, min(page, total_pages))
        start_idx = (page - 1) * per_page
        page_items = queue[start_idx:start_idx + per_page]

        queue_text = ""
        for i, entry in enumerate(page_items, start=start_idx + 1):
            queue_text += f"`{i}.` **{entry.title}** - {format_duration(entry.duration)} ({entry.requester_name})\n"

        embed.add_field(
            name=f"Up Next ({len(queue)} songs)",
            value=queue_text[:1024],
            inline=False
        )

        if total_pages > 1:
            embed.set_footer(text=f"Page {page}/{total_pages}")

    total_sec = sum(entry.duration for entry in queue)
    if current:
        total_sec += current.duration
    embed.add_field(
        name="Total Duration",
        value=format_duration(total_sec),
        inline=True
    )

    return embed


def create_added_to_queue_embed(entry: QueueEntry, position: int) -> discord.Embed:
    """Create an embed for when a track is added to queue."""
    embed = discord.Embed(
        title="✅ Added to Queue",
        description=f"**[{entry.title}]({entry.source_url})**",
        color=Config.COLOR_SUCCESS
    )

    embed.add_field(name="Duration", value=format_duration(entry.duration), inline=True)
    embed.add_field(name="Position", value=f"#{position}", inline=True)
    embed.add_field(name="Requested by", value=entry.requester_name, inline=True)
    return embed


def create_playlist_added_embed(entries: List[QueueEntry], name: Optional[str] = None) -> discord.Embed:
    total = sum(e.duration for e in entries)
    embed = discord.Embed(
        title="📋 Playlist Queued",
        description=f"Added **{len(entries)}** songs" + (f" from **{name}**" if name else ""),
        color=Config.COLOR_SUCCESS
    )
    embed.add_field(name="First", value=entries[0].title if entries else "-", inline=True)
    embed.add_field(name="Total Duration", value=format_duration(total), inline=True)
    return embed


def create_history_embed(history: List[HistoryEntry]) -> discord.Embed:
    embed = discord.Embed(title="🕘 Recently Played", color=Config.COLOR_PRIMARY)
    if not history:
        embed.description = "*Nothing has been played yet.*"
        return embed
    lines = []
    for i, item in enumerate(history, start=1):
        when = discord.utils.format_dt(item.played_at, style="R")
        lines.append(f"`{i}.` **{item.entry.title}** {when}")
    embed.description = "\n".join(lines)[:4096]
    return embed


def create_error_embed(message: str) -> discord.Embed:
    """Create an error embed."""
    return discord.Embed(
        title="❌ Error",
        description=message,
        color=Config.COLOR_ERROR
    )


def create_success_embed(message: str) -> discord.Embed:
    """Create a success embed."""
    return discord.Embed(
        title="✅ Success",
        description=message,
        color=Config.COLOR_SUCCESS
    )


def create_info_embed(title: str, message: str) -> discord.Embed:
    """Create an info embed."""
    return discord.Embed(
        title=f"ℹ️ {title}",
        description=message,
        color=Config.COLOR_INFO
    )


def create_warning_embed(message: str) -> discord.Embed:
    return discord.Embed(
        title="⚠️ Warning",
        description=message,
        color=Config.COLOR_WARNING
    )


def create_event_embed(event: SessionEvent) -> Optional[discord.Embed]:
    """
    Render a session event for the guild's text channel.

    Returns None for events the interaction reply already covers
    (enqueue confirmations and /stop).
    """
    kind = event.kind
    if kind is EventKind.NOW_PLAYING and event.entry:
        return create_now_playing_embed(event.entry)
    if kind is EventKind.DOWNLOADING and event.entry:
        return create_info_embed("Downloading", f"Fetching **{event.entry.title}**...")
    if kind is EventKind.DUPLICATE_WARNING and event.entry:
        return create_warning_embed(
            f"**{event.entry.title}** is already in the queue at position #{event.position}."
        )
    if kind is EventKind.ERROR:
        if event.entry is not None:
            reason = ERROR_MESSAGES.get(event.error, "Playback failed.")
            return create_error_embed(f"Skipping **{event.entry.title}**: {reason}")
        return create_error_embed(event.detail or "Playback failed.")
    if kind is EventKind.RECONNECT_STATUS:
        return create_warning_embed(
            f"Voice connection lost. Reconnecting (attempt {event.attempt}/{event.max_attempts})..."
        )
    if kind is EventKind.RECONNECTED:
        return create_success_embed("🔌 Reconnected to voice.")
    if kind is EventKind.CONNECTION_LOST:
        return create_error_embed("Lost the voice connection. Use `/restorequeue` to pick up where you left off.")
    if kind is EventKind.RADIO_REFILLED:
        return create_info_embed("Radio", f"📻 Added {event.count} related songs to the queue.")
    if kind is EventKind.QUEUE_EMPTY:
        return create_info_embed("Queue Empty", "Use `/play` to add more songs!")
    if kind is EventKind.QUEUE_FINISHED:
        return create_info_embed("Queue Finished", "👋 Leaving the voice channel.")
    return None


def create_favorites_embed(title: str, songs: List[Dict[str, Any]], empty: str) -> discord.Embed:
    embed = discord.Embed(title=title, color=Config.COLOR_PRIMARY)
    if not songs:
        embed.description = empty
        return embed
    lines = [
        f"`{i}.` **{song['title']}** - {format_duration(song.get('duration') or 0)} (`{song['id']}`)"
        for i, song in enumerate(songs, start=1)
    ]
    embed.description = "\n".join(lines)[:4096]
    return embed


def create_cache_stats_embed(stats: Dict[str, Any], max_size_bytes: int,
                             downloading: int = 0) -> discord.Embed:
    embed = discord.Embed(title="💾 Cache Statistics", color=Config.COLOR_PRIMARY)
    embed.add_field(name="Files", value=str(stats["total_files"]), inline=True)
    embed.add_field(
        name="Size",
        value=f"{format_size(stats['total_size_bytes'])} / {format_size(max_size_bytes)}",
        inline=True
    )
    embed.add_field(name="Hit Rate", value=f"{stats['hit_rate']:.1f}%", inline=True)
    embed.add_field(name="Hits", value=str(stats["hits"]), inline=True)
    embed.add_field(name="Misses", value=str(stats["misses"]), inline=True)
    embed.add_field(name="Downloading", value=str(downloading), inline=True)
    return embed


def create_cache_list_embed(entries: List["CacheEntry"], limit: int = 15) -> discord.Embed:
    embed = discord.Embed(title="💾 Cached Songs", color=Config.COLOR_PRIMARY)
    if not entries:
        embed.description = "*The cache is empty.*"
        return embed
    lines = []
    for entry in entries[:limit]:
        star = "⭐ " if entry.popular else ""
        lines.append(f"{star}`{entry.track_id}` {format_size(entry.size_bytes)}, {entry.play_count} play(s)")
    embed.description = "\n".join(lines)
    if len(entries) > limit:
        embed.set_footer(text=f"...and {len(entries) - limit} more")
    return embed


def create_clean_result_embed(result: "CleanResult") -> discord.Embed:
    return create_success_embed(
        f"🧹 Removed **{result.deleted}** file(s), freed {format_size(result.freed_bytes)}.\n"
        f"Kept **{result.kept_popular}** popular file(s)."
    )
