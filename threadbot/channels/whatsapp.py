"""WhatsApp channel implementation using a Node.js bridge."""

import asyncio
import json

from loguru import logger

from threadbot.bus.events import InboundPayload, OutboundMessage
from threadbot.bus.queue import InboundQueue
from threadbot.channels.base import BaseChannel
from threadbot.config.schema import WhatsAppConfig
from threadbot.errors import TransportError

VOICE_PLACEHOLDERS = {"[Voice Message]", "[Audio]"}


class WhatsAppChannel(BaseChannel):
    """
    WhatsApp channel that connects to a Node.js bridge.

    The bridge handles the WhatsApp Web protocol (pairing, reconnects, media
    download). Communication with it is JSON over a WebSocket.
    """

    name = "whatsapp"

    def __init__(self, config: WhatsAppConfig, queue: InboundQueue):
        super().__init__(config, queue)
        self.config: WhatsAppConfig = config
        self._ws = None
        self._connected = False

    async def start(self) -> None:
        """Start the WhatsApp channel by connecting to the bridge."""
        import websockets

        bridge_url = self.config.bridge_url
        auth_token = str(self.config.bridge_auth_token or "").strip()
        if not auth_token:
            raise RuntimeError("channels.whatsapp.bridge_auth_token is required for bridge authentication.")
        headers = {"x-bridge-token": auth_token}

        logger.info(f"Connecting to WhatsApp bridge at {bridge_url}...")

        self._running = True

        while self._running:
            try:
                async with websockets.connect(bridge_url, additional_headers=headers) as ws:
                    self._ws = ws
                    self._connected = True
                    logger.info("Connected to WhatsApp bridge")

                    async for message in ws:
                        try:
                            await self._handle_bridge_message(message)
                        except Exception as e:
                            logger.error(f"Error handling bridge message: {e}")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"WhatsApp bridge connection error: {e}")
            finally:
                self._connected = False
                self._ws = None

            if self._running:
                logger.info(f"Reconnecting in {self.config.reconnect_delay_s:.0f} seconds...")
                await asyncio.sleep(self.config.reconnect_delay_s)

    async def stop(self) -> None:
        """Stop the WhatsApp channel."""
        self._running = False
        self._connected = False

        if self._ws:
            await self._ws.close()
            self._ws = None

    async def send(self, msg: OutboundMessage) -> None:
        """Send a message through WhatsApp."""
        if not self._ws or not self._connected:
            raise TransportError("WhatsApp bridge not connected")

        if msg.control:
            state = "composing" if msg.control == "typing_start" else "paused"
            payload = {
                "type": "presence",
                "to": msg.chat_id,
                "state": state,
            }
        else:
            payload = {
                "type": "send",
                "to": msg.chat_id,
                "text": msg.content,
            }
            if msg.reply_to:
                payload["replyTo"] = str(msg.reply_to)

        try:
            await self._ws.send(json.dumps(payload, ensure_ascii=False))
        except Exception as e:
            raise TransportError(f"Error sending WhatsApp message: {e}") from e
        if not msg.control:
            logger.info(f"Reply sent to {msg.chat_id} ({len(msg.content)} chars)")

    async def _handle_bridge_message(self, raw: str) -> None:
        """Handle a message from the bridge."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from bridge: {raw[:100]}")
            return

        msg_type = data.get("type")

        if msg_type == "message":
            self._handle_inbound(data)

        elif msg_type == "status":
            status = data.get("status")
            logger.info(f"WhatsApp status: {status}")

            if status == "connected":
                self._connected = True
            elif status == "disconnected":
                self._connected = False

        elif msg_type == "qr":
            logger.info("Scan QR code in the bridge terminal to connect WhatsApp")

        elif msg_type == "error":
            logger.error(f"WhatsApp bridge error: {data.get('error')}")

    def _handle_inbound(self, data: dict) -> None:
        if data.get("isGroup") and not self.config.allow_groups:
            logger.debug(f"Ignoring group message from {data.get('sender')}")
            return

        # Old phone-number style ids look like <phone>@s.whatsapp.net; newer
        # ones are LIDs. Either way the full sender id is the reply address.
        pn = str(data.get("pn") or "")
        sender = str(data.get("sender") or "")
        if not sender:
            logger.warning("Bridge message without sender")
            return
        user_id = pn if pn else sender
        sender_id = user_id.split("@")[0] if "@" in user_id else user_id

        content = str(data.get("content") or "")
        media_path = data.get("mediaPath")
        media_type = str(data.get("mediaType") or "").lower() or None
        metadata = {
            "message_id": data.get("id"),
            "timestamp": data.get("timestamp"),
        }

        if content in VOICE_PLACEHOLDERS:
            media_type = media_type or "voice"
            content = ""

        if media_path or media_type:
            payload = InboundPayload.media(
                media_type=media_type or "file",
                media_path=str(media_path) if media_path else None,
                content=content,
                **metadata,
            )
        elif content.strip():
            payload = InboundPayload.text(content, **metadata)
        else:
            return

        logger.info(f"Message from {sender_id} ({payload.media_type or payload.kind})")
        self._handle_message(sender_id=sender_id, chat_id=sender, payload=payload)
