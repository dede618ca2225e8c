import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import discord

logger = logging.getLogger(__name__)

MessageFilter = Callable[[discord.Message], Awaitable[bool]]
MessageHandler = Callable[[discord.Message], Awaitable[bool | None]]


@dataclass
class MessageRoute:
    name: str
    filter_func: MessageFilter
    handler_func: MessageHandler
    pass_through: bool = True


class MessageRouter:
    """
    Routes chat messages to the cogs that registered for them.

    Routes run in registration order. A route whose filter accepts the message
    stops the chain when it was registered with pass_through=False or when its
    handler returns False. A failing route is logged and the chain continues.
    """

    def __init__(self):
        self.routes: list[MessageRoute] = []

    def register_handler(
        self,
        name: str,
        filter_func: MessageFilter,
        handler_func: MessageHandler,
        pass_through: bool = True,
    ) -> None:
        self.routes.append(MessageRoute(name, filter_func, handler_func, pass_through))

    async def process_message(self, message: discord.Message) -> list[str]:
        """
        Run a message through the routes.

        Returns:
            Names of the routes whose handler ran
        """
        handled = []
        for route in self.routes:
            try:
                if not await route.filter_func(message):
                    continue
                result = await route.handler_func(message)
            except Exception as e:
                # Log and keep routing
                logger.error(f"Error in message route '{route.name}': {e}", exc_info=True)
                continue

            handled.append(route.name)
            if not route.pass_through or result is False:
                break
        return handled
