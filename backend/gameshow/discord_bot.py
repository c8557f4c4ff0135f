"""Discord front-end: the game is played in the channels named after ``CHANNEL_PATTERN``.

Players are the members of the matching voice channel. The admin drives the
round with ``!start``, ``!register``, ``!clear``, ``!join`` and
``!play-test-audio`` in the matching text channel and judges buzzes by reacting
to the question with a check mark or a cross. Everybody else answers by typing
or buzzes by reacting with a bell.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Dict, List, Optional, Set

import discord

from .announcer import Payload
from .commands import COMMAND_PREFIX, dispatch
from .config import Settings, configure_logging, settings
from .errors import PreconditionError
from .leaderboard import CollectionLeaderboard
from .models import Member
from .questions import load_questions
from .sessions import SessionRegistry
from .timers import AsyncioScheduler
from .utils import drain, spawn

logger = logging.getLogger(__name__)

BUZZ_EMOJI = "\N{BELL}"
CORRECT_EMOJI = "\N{WHITE HEAVY CHECK MARK}"
WRONG_EMOJI = "\N{CROSS MARK}"

EMBED_COLOUR = discord.Colour.blurple()


class DiscordAnnouncer:
    """Renders display requests as messages and embeds in the game text channel."""

    def __init__(self, channel: discord.abc.Messageable):
        self.channel = channel
        self.question_message_id: Optional[int] = None
        # index of the question currently on display, None once its answer is out
        self._showing: Optional[int] = None
        self._pending: Set[asyncio.Task] = set()

    def display_question(self, payload: Payload) -> None:
        embed = discord.Embed(
            title=payload["prompt"],
            description=f"Hint: {payload['hint']}" if payload.get("hint") else None,
            colour=EMBED_COLOUR,
        )
        embed.set_author(name=payload["kind_label"])
        for choice in payload.get("choices", []):
            embed.add_field(name=choice["label"], value=choice["value"], inline=True)
        embed.set_footer(
            text=f"Question {payload['question_index'] + 1}/{payload['total_questions']}"
            f" - {payload['points']} pt(s) - {int(payload['duration'])}s"
        )
        self._showing = payload["question_index"]
        self.question_message_id = None
        spawn(self._send_question(embed, payload["question_index"]), self._pending, "display question")

    async def _send_question(self, embed: discord.Embed, index: int) -> None:
        message = await self.channel.send(embed=embed)
        if self._showing != index:
            logger.debug("Question %s was closed before its message was sent", index)
            return
        self.question_message_id = message.id
        await message.add_reaction(BUZZ_EMOJI)

    def display_answer(self, payload: Payload) -> None:
        self._showing = None
        self.question_message_id = None
        if payload.get("winner_name"):
            description = f"{payload['winner_name']} wins {payload['awarded']} pt(s)"
        else:
            description = "Nobody found it"
        embed = discord.Embed(title=f"Answer: {payload['correct_answer']}", description=description, colour=EMBED_COLOUR)
        spawn(self.channel.send(embed=embed), self._pending, "display answer")

    def display_results(self, payload: Payload) -> None:
        lines = [
            f"**{rank}. {p['display_name']}** - {p['score']} pt(s)"
            for rank, p in enumerate(payload["leaderboard"], start=1)
        ]
        embed = discord.Embed(title="Final scores", description="\n".join(lines) or "No players", colour=EMBED_COLOUR)
        spawn(self.channel.send(embed=embed), self._pending, "display results")

    def display_message(self, text: str) -> None:
        spawn(self.channel.send(text), self._pending, "display message")

    async def drain(self) -> None:
        await drain(self._pending)


class VoiceRoster:
    """Members sitting in the voice channel paired with a game text channel."""

    def __init__(self, bot: "GameShowBot"):
        self.bot = bot

    def list_eligible_members(self, channel: str) -> List[Member]:
        voice = self.bot.voice_channels.get(channel)
        if voice is None:
            logger.warning("No voice channel paired with %s", channel)
            return []
        return [
            Member(id=str(m.id), display_name=m.display_name, is_bot=m.bot)
            for m in voice.members
        ]


class VoiceAudioPlayer:
    def __init__(self, bot: "GameShowBot", channel: str):
        self.bot = bot
        self.channel = channel
        self._pending: Set[asyncio.Task] = set()

    def _voice_client(self) -> Optional[discord.VoiceClient]:
        voice = self.bot.voice_channels.get(self.channel)
        if voice is None:
            return None
        return voice.guild.voice_client

    def connect(self) -> None:
        voice = self.bot.voice_channels.get(self.channel)
        if voice is None:
            logger.warning("No voice channel to join for %s", self.channel)
            return
        if self._voice_client() is not None:
            return
        spawn(voice.connect(), self._pending, f"join {voice.name}")

    def play(self, uri: str) -> None:
        client = self._voice_client()
        if client is None or not client.is_connected():
            logger.warning("Not connected to voice in %s; cannot play %s", self.channel, uri)
            return
        if client.is_playing():
            client.stop()
        client.play(discord.FFmpegPCMAudio(uri), after=self._after_play)

    def _after_play(self, error: Optional[Exception]) -> None:
        if error is not None:
            logger.error("Playback failed in %s", self.channel, exc_info=error)


class GameShowBot(discord.Client):
    def __init__(self, config: Settings):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.voice_states = True
        super().__init__(intents=intents)

        self.config = config
        self.admin_ids = set(config.admin_ids)
        self.channel_pattern = re.compile(config.CHANNEL_PATTERN, re.IGNORECASE)
        self.text_channels: Dict[str, discord.TextChannel] = {}
        # keyed by the id of the paired text channel
        self.voice_channels: Dict[str, discord.VoiceChannel] = {}
        self.announcers: Dict[str, DiscordAnnouncer] = {}
        self._reaction_tasks: Set[asyncio.Task] = set()

        self.registry = SessionRegistry(
            config,
            roster=VoiceRoster(self),
            leaderboard=CollectionLeaderboard(),
            scheduler=AsyncioScheduler(),
            announcer_factory=self._announcer_for,
            audio_factory=lambda channel: VoiceAudioPlayer(self, channel),
            question_source=lambda: load_questions(config.QUESTIONS_FILE),
        )

    def _announcer_for(self, channel: str) -> DiscordAnnouncer:
        announcer = DiscordAnnouncer(self.text_channels[channel])
        self.announcers[channel] = announcer
        return announcer

    def discover_channels(self) -> None:
        for guild in self.guilds:
            texts = [c for c in guild.text_channels if self.channel_pattern.search(c.name)]
            voices = [c for c in guild.voice_channels if self.channel_pattern.search(c.name)]
            for text in texts:
                key = str(text.id)
                self.text_channels[key] = text
                logger.info("Text channel %s found in %s", text.name, guild.name)
                if voices:
                    self.voice_channels[key] = voices[0]
                    logger.info("Voice channel %s paired with %s", voices[0].name, text.name)

    async def on_ready(self):
        logger.info("Logged in as %s", self.user)
        self.discover_channels()

    def is_admin(self, user: discord.abc.User) -> bool:
        return str(user.id) in self.admin_ids

    async def on_message(self, message: discord.Message):
        if message.author.bot:
            return
        key = str(message.channel.id)
        if key not in self.text_channels:
            return

        controller = self.registry.get_or_create(key)
        if self.is_admin(message.author):
            if not message.content.startswith(COMMAND_PREFIX):
                return
            try:
                dispatch(controller, message.content)
            except PreconditionError as exc:
                await message.channel.send(f"{WRONG_EMOJI} {exc}")
            return

        controller.submit_answer(str(message.author.id), message.content)

    async def on_reaction_add(self, reaction: discord.Reaction, user: discord.abc.User):
        if user.bot:
            return
        key = str(reaction.message.channel.id)
        controller = self.registry.get(key)
        announcer = self.announcers.get(key)
        if controller is None or announcer is None:
            return
        if reaction.message.id != announcer.question_message_id:
            return

        emoji = str(reaction.emoji)
        if self.is_admin(user):
            if emoji in (CORRECT_EMOJI, WRONG_EMOJI):
                controller.resolve_buzz(emoji == CORRECT_EMOJI)
                # Discord only reports a user's reaction once per message
                spawn(reaction.remove(user), self._reaction_tasks, f"remove {emoji}")
        elif emoji == BUZZ_EMOJI:
            controller.buzz(str(user.id))

    async def drain(self) -> None:
        await drain(self._reaction_tasks)
        for announcer in self.announcers.values():
            await announcer.drain()


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    if not settings.DISCORD_TOKEN:
        raise SystemExit("DISCORD_TOKEN is not set")
    bot = GameShowBot(settings)
    bot.run(settings.DISCORD_TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
