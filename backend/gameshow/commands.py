from __future__ import annotations

import logging
from typing import Callable, Dict

from .controller import RoundController

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "!"

COMMANDS: Dict[str, Callable[[RoundController], object]] = {
    "start": RoundController.start,
    "register": RoundController.register,
    "clear": RoundController.clear,
    "join": RoundController.join_voice,
    "play-test-audio": RoundController.play_test_audio,
}


def parse_command(text: str) -> str:
    name = text.strip()
    if name.startswith(COMMAND_PREFIX):
        name = name[len(COMMAND_PREFIX):]
    return name.strip().lower()


def dispatch(controller: RoundController, text: str) -> bool:
    """Run an admin command against a controller.

    Returns ``False`` for unknown commands, which are logged and ignored.
    Precondition failures propagate so the caller can report them to the admin.
    """
    name = parse_command(text)
    handler = COMMANDS.get(name)
    if handler is None:
        logger.info("Unknown admin command %r ignored", text)
        return False

    logger.info("Session %s: admin command %s", controller.session.id, name)
    handler(controller)
    return True
