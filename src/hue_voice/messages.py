from __future__ import annotations

import enum
import logging

from hue_voice.channel import NotificationChannel, RequestAcknowledged, UserMessage

logger = logging.getLogger(__name__)


class MessageKind(enum.Enum):
    NO_BRIDGE_FOUND = "errorNoBridge"
    NOT_REGISTERED = "errorNotRegistered"
    CONNECTED = "bridgeConnected"
    CONNECTION_TIMED_OUT = "bridgeTimeout"
    CONNECTION_IN_PROGRESS = "connectionInProgress"
    INVALID_COMMAND = "invalidCommand"
    INVALID_ROOM = "invalidRoom"
    SLEEP_PROMPT = "sleepPrompt"
    NIGHT_PROMPT = "nightPrompt"
    NIGHT_CONFIRMATION = "nightConfirmation"
    REQUEST_IN_PROGRESS = "requestInProgress"


CONNECTING_TEXT = "Just a minute while I connect to your lighting system."

MESSAGE_TEXT: dict[MessageKind, str] = {
    MessageKind.NO_BRIDGE_FOUND: (
        "I can't find your Philips Hue bridge. Can you make sure it is powered on "
        "and connected to your network?"
    ),
    MessageKind.NOT_REGISTERED: (
        "Press the button on your Philips Hue bridge and I'll let you know when I'm connected."
    ),
    MessageKind.CONNECTED: "I am connected to your lighting system. How can I help you today?",
    MessageKind.CONNECTION_TIMED_OUT: (
        "I can't seem to connect to your bridge and am going to take a break. "
        "Let me know when you'd like me to try again."
    ),
    MessageKind.CONNECTION_IN_PROGRESS: CONNECTING_TEXT,
    MessageKind.INVALID_COMMAND: (
        "Sorry I didn't understand that. Perhaps you'd like me to turn the lights on or off, "
        "or to dim them?"
    ),
    MessageKind.INVALID_ROOM: "I don't recognize that room.",
    MessageKind.SLEEP_PROMPT: "Would you like me to turn off the lights in five minutes?",
    MessageKind.NIGHT_PROMPT: "Would you like me to turn on the lights?",
    MessageKind.NIGHT_CONFIRMATION: "Oh, that's much better!",
    MessageKind.REQUEST_IN_PROGRESS: "Hold on, I'm still working on your last request.",
}

# Announced in full once; afterwards the user only hears that we're connecting.
ANNOUNCE_ONCE = frozenset({MessageKind.NO_BRIDGE_FOUND, MessageKind.NOT_REGISTERED})


class MessagePublisher:
    def __init__(self, *, channel: NotificationChannel) -> None:
        self._channel = channel
        self._announced: set[MessageKind] = set()

    def text_for(self, kind: MessageKind) -> str | None:
        if kind in ANNOUNCE_ONCE and kind in self._announced:
            return CONNECTING_TEXT
        return MESSAGE_TEXT.get(kind)

    async def publish(self, kind: MessageKind) -> str | None:
        text = self.text_for(kind)
        if text is None:
            logger.error('Encountered an unsupported message type "%s".', kind)
            return None
        if kind in ANNOUNCE_ONCE:
            self._announced.add(kind)
        logger.debug("Publishing %s: %s", kind.name, text)
        await self._channel.publish(UserMessage(text=text))
        return text

    async def publish_text(self, text: str) -> None:
        await self._channel.publish(UserMessage(text=text))

    async def acknowledge(self) -> None:
        await self._channel.publish(RequestAcknowledged())
