from types import SimpleNamespace
from unittest import IsolatedAsyncioTestCase, mock

from .config import Settings
from .discord_bot import BUZZ_EMOJI, CORRECT_EMOJI, WRONG_EMOJI, DiscordAnnouncer, GameShowBot, VoiceAudioPlayer
from .models import RoundState


def _channel(channel_id: int = 100, message_id: int = 7):
    sent = mock.Mock(id=message_id)
    sent.add_reaction = mock.AsyncMock()
    channel = mock.Mock(id=channel_id)
    channel.send = mock.AsyncMock(return_value=sent)
    return channel, sent


class DiscordAnnouncerTests(IsolatedAsyncioTestCase):
    async def test_question_is_an_embed_with_a_buzzer(self):
        channel, sent = _channel()
        announcer = DiscordAnnouncer(channel)

        announcer.display_question(
            {
                "prompt": "Red planet?",
                "hint": None,
                "kind_label": "Multiple choice",
                "choices": [{"label": "A", "value": "Venus"}, {"label": "B", "value": "Mars"}],
                "question_index": 1,
                "total_questions": 4,
                "points": 1,
                "duration": 20.0,
            }
        )
        await announcer.drain()

        embed = channel.send.call_args.kwargs["embed"]
        self.assertEqual(embed.title, "Red planet?")
        self.assertEqual(embed.author.name, "Multiple choice")
        self.assertEqual([f.value for f in embed.fields], ["Venus", "Mars"])
        self.assertEqual(embed.footer.text, "Question 2/4 - 1 pt(s) - 20s")
        sent.add_reaction.assert_awaited_once_with(BUZZ_EMOJI)
        self.assertEqual(announcer.question_message_id, 7)

    async def test_late_question_message_does_not_accept_buzzes(self):
        channel, sent = _channel()
        announcer = DiscordAnnouncer(channel)
        question = {
            "prompt": "Capital of France?",
            "kind_label": "Free text",
            "question_index": 0,
            "total_questions": 4,
            "points": 2,
            "duration": 20.0,
        }

        announcer.display_question(question)
        announcer.display_answer({"correct_answer": "Paris", "winner_name": None})
        await announcer.drain()

        self.assertIsNone(announcer.question_message_id)
        sent.add_reaction.assert_not_awaited()

    async def test_results_are_ranked(self):
        channel, _ = _channel()
        announcer = DiscordAnnouncer(channel)

        announcer.display_results(
            {"leaderboard": [{"display_name": "Carol", "score": 3}, {"display_name": "Alice", "score": 1}]}
        )
        await announcer.drain()

        embed = channel.send.call_args.kwargs["embed"]
        self.assertEqual(embed.description, "**1. Carol** - 3 pt(s)\n**2. Alice** - 1 pt(s)")

    async def test_send_failures_are_logged(self):
        channel, _ = _channel()
        channel.send.side_effect = RuntimeError("missing permissions")
        announcer = DiscordAnnouncer(channel)

        with self.assertLogs("backend.gameshow.utils", level="ERROR"):
            announcer.display_message("hello")
            await announcer.drain()


class GameShowBotTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.bot = GameShowBot(Settings(_env_file=None, ADMIN_IDS="1", COUNTDOWN_SECONDS=0))
        self.text, self.sent = _channel()
        self.voice = SimpleNamespace(
            name="Plateau",
            guild=SimpleNamespace(voice_client=None),
            members=[
                SimpleNamespace(id=1, display_name="Host", bot=False),
                SimpleNamespace(id=2, display_name="Alice", bot=False),
                SimpleNamespace(id=3, display_name="Jukebox", bot=True),
            ],
        )
        self.bot.text_channels["100"] = self.text
        self.bot.voice_channels["100"] = self.voice

    async def asyncTearDown(self):
        for controller in self.bot.registry:
            controller.clear()
        await self.bot.drain()

    def _message(self, author_id: int, content: str, bot: bool = False):
        return SimpleNamespace(author=SimpleNamespace(id=author_id, bot=bot), channel=self.text, content=content)

    def _reaction(self, emoji: str):
        return SimpleNamespace(
            emoji=emoji,
            message=SimpleNamespace(id=self.sent.id, channel=self.text),
            remove=mock.AsyncMock(),
        )

    async def _start(self):
        await self.bot.on_message(self._message(1, "!start"))
        await self.bot.announcers["100"].drain()
        return self.bot.registry.get("100")

    async def test_admin_start_registers_voice_members(self):
        controller = await self._start()

        self.assertEqual(controller.state, RoundState.QUESTION_OPEN)
        self.assertEqual([p.id for p in controller.session.players], ["2"])

    async def test_precondition_is_reported_in_channel(self):
        self.voice.members = []
        await self.bot.on_message(self._message(1, "!start"))

        self.text.send.assert_awaited()
        self.assertIn("no eligible player", self.text.send.call_args.args[0])
        self.assertEqual(self.bot.registry.get("100").state, RoundState.IDLE)

    async def test_player_messages_are_answers(self):
        controller = await self._start()

        await self.bot.on_message(self._message(2, "Paris"))
        self.assertEqual(controller.session.player("2").score, 2)
        self.assertEqual(controller.state, RoundState.ANSWER_REVEALED)

    async def test_bot_messages_and_other_channels_are_ignored(self):
        await self.bot.on_message(self._message(4, "!start", bot=True))
        other = SimpleNamespace(author=SimpleNamespace(id=1, bot=False), channel=SimpleNamespace(id=5), content="!start")
        await self.bot.on_message(other)
        self.assertEqual(len(self.bot.registry), 0)

    async def test_buzz_reaction_then_admin_judgement(self):
        controller = await self._start()

        await self.bot.on_reaction_add(self._reaction(BUZZ_EMOJI), SimpleNamespace(id=2, bot=False))
        self.assertEqual(controller.state, RoundState.QUESTION_LOCKED)

        await self.bot.on_reaction_add(self._reaction(CORRECT_EMOJI), SimpleNamespace(id=1, bot=False))
        self.assertEqual(controller.session.player("2").score, 2)
        self.assertEqual(controller.state, RoundState.ANSWER_REVEALED)

    async def test_admin_can_reject_two_buzzes_on_one_question(self):
        self.voice.members.append(SimpleNamespace(id=4, display_name="Bob", bot=False))
        controller = await self._start()
        admin = SimpleNamespace(id=1, bot=False)

        await self.bot.on_reaction_add(self._reaction(BUZZ_EMOJI), SimpleNamespace(id=2, bot=False))
        first = self._reaction(WRONG_EMOJI)
        await self.bot.on_reaction_add(first, admin)
        await self.bot.drain()
        first.remove.assert_awaited_once_with(admin)
        self.assertEqual(controller.state, RoundState.QUESTION_OPEN)

        await self.bot.on_reaction_add(self._reaction(BUZZ_EMOJI), SimpleNamespace(id=4, bot=False))
        self.assertEqual(controller.state, RoundState.QUESTION_LOCKED)
        second = self._reaction(WRONG_EMOJI)
        await self.bot.on_reaction_add(second, admin)
        await self.bot.drain()

        second.remove.assert_awaited_once_with(admin)
        self.assertEqual(controller.state, RoundState.ANSWER_REVEALED)
        self.assertEqual([p.score for p in controller.session.players], [0, 0])

    async def test_player_cannot_judge_buzzes(self):
        controller = await self._start()

        await self.bot.on_reaction_add(self._reaction(BUZZ_EMOJI), SimpleNamespace(id=2, bot=False))
        await self.bot.on_reaction_add(self._reaction(CORRECT_EMOJI), SimpleNamespace(id=2, bot=False))
        self.assertEqual(controller.state, RoundState.QUESTION_LOCKED)


class VoiceAudioPlayerTests(IsolatedAsyncioTestCase):
    async def test_play_without_connection_is_logged(self):
        bot = SimpleNamespace(voice_channels={"100": SimpleNamespace(guild=SimpleNamespace(voice_client=None))})
        player = VoiceAudioPlayer(bot, "100")

        with self.assertLogs("backend.gameshow.discord_bot", level="WARNING"):
            player.play("media/test.mp3")

    async def test_play_stops_current_track(self):
        client = mock.Mock()
        client.is_connected.return_value = True
        client.is_playing.return_value = True
        bot = SimpleNamespace(voice_channels={"100": SimpleNamespace(guild=SimpleNamespace(voice_client=client))})
        player = VoiceAudioPlayer(bot, "100")

        with mock.patch("backend.gameshow.discord_bot.discord.FFmpegPCMAudio") as source:
            player.play("media/test.mp3")

        client.stop.assert_called_once()
        source.assert_called_once_with("media/test.mp3")
        client.play.assert_called_once()
