"""Discord transport: relays channel messages to the chat service.

Triggers:
- Direct messages
- Mentions of the bot in a server channel
- Messages starting with the command prefix (``!c`` by default)
- The reset command (``!delete``), which clears the user's conversation context
"""

import io
import logging
from typing import Any

import discord

from relaybot.core.config import settings
from relaybot.core.errors import ReplyError
from relaybot.services.chat import ChatService
from relaybot.services.chunker import DeliveryPlan, plan_delivery
from relaybot.services.recorder import PersistenceRecorder

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "Thinking..."
FAILURE_TEXT = "Sorry, your message could not be processed."
FILE_NOTICE_TEXT = "The reply was too long, so it is attached as a file."
RESET_DONE_TEXT = "Your conversation has been reset."
RESET_EMPTY_TEXT = "There is no conversation to reset."


async def deliver(placeholder: Any, channel: Any, plan: DeliveryPlan) -> None:
    """Send a delivery plan, replacing the in-progress placeholder first."""
    if plan.kind == "file":
        attachment = discord.File(io.BytesIO(plan.text.encode("utf-8")), filename="reply.txt")
        await placeholder.edit(content=FILE_NOTICE_TEXT, attachments=[attachment])
        return

    await placeholder.edit(content=plan.parts[0])
    for chunk in plan.parts[1:]:
        await channel.send(chunk)


class DiscordBot:
    def __init__(
        self,
        chat: ChatService,
        recorder: PersistenceRecorder,
        command_prefix: str | None = None,
        reset_command: str | None = None,
    ):
        self.chat = chat
        self.recorder = recorder
        self.command_prefix = command_prefix or settings.discord_command_prefix
        self.reset_command = reset_command or settings.discord_reset_command
        self._client: discord.Client | None = None

    def _create_client(self) -> discord.Client:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.dm_messages = True

        client = discord.Client(intents=intents)
        bot_self = self

        @client.event
        async def on_ready():
            logger.info(f"Discord connected as {client.user} ({len(client.guilds)} guilds)")

        @client.event
        async def on_message(message):
            await bot_self.handle_message(message, client.user)

        self._client = client
        return client

    def extract_prompt(self, message: Any, bot_user: Any) -> str | None:
        """Return the text to send to the assistant, or None if the message is not for us."""
        content = message.content or ""
        is_dm = message.guild is None
        is_mention = bot_user is not None and bot_user in message.mentions

        if content.startswith(self.command_prefix):
            content = content[len(self.command_prefix):]
        elif is_mention:
            content = content.replace(f"<@{bot_user.id}>", "").replace(f"<@!{bot_user.id}>", "")
        elif not is_dm:
            return None

        content = content.strip()
        return content or None

    async def handle_message(self, message: Any, bot_user: Any) -> None:
        if message.author.bot:
            return

        if message.content.strip() == self.reset_command:
            await self._reset(message)
            return

        prompt = self.extract_prompt(message, bot_user)
        if prompt is None:
            return

        placeholder = await message.reply(PLACEHOLDER_TEXT, mention_author=False)
        try:
            result = await self.chat.generate_reply(
                str(message.author.id), message.author.name, prompt
            )
            plan = plan_delivery(
                result.reply, settings.chunk_char_limit, settings.chunk_file_threshold
            )
            await deliver(placeholder, message.channel, plan)
        except ReplyError as e:
            logger.error(f"Turn for {message.author.id} failed ({e.kind.value}): {e.message}")
            await placeholder.edit(content=FAILURE_TEXT)
        except Exception as e:
            logger.exception(f"Unexpected error handling message from {message.author.id}: {e}")
            await placeholder.edit(content=FAILURE_TEXT)

    async def _reset(self, message: Any) -> None:
        try:
            reset = await self.recorder.reset(str(message.author.id))
        except ReplyError as e:
            logger.error(f"Reset for {message.author.id} failed: {e.message}")
            await message.reply(FAILURE_TEXT, mention_author=False)
            return
        await message.reply(RESET_DONE_TEXT if reset else RESET_EMPTY_TEXT, mention_author=False)

    async def start(self, token: str) -> None:
        client = self._client or self._create_client()
        await client.start(token)

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed():
            await self._client.close()
