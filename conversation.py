"""
Multi-turn WhatsApp conversation flow.

Each inbound message is evaluated against the user's session flags, in order:

1. waiting_for_style set -> the message is a style reply for the stored photo
2. message has a photo   -> store it and ask for a style
3. not greeted yet       -> welcome message, mark greeted
4. greeted               -> message text is a generation prompt

There is no per-user locking: a retried webhook can interleave with the
original delivery and the last write to a field wins.
"""
import logging
from enum import Enum
from typing import List, Optional

from errors import ConfigurationError
from image_generation import GeneratedImage, ImageGenerator
from media_tracker import MediaLifecycleTracker
from session_state import SessionState
from storage import content_type_for, extract_filename_from_media_url
from styles import resolve_style_instruction, style_menu_text
from whatsapp_utils import InboundMessage, WhatsAppMessenger

logger = logging.getLogger(__name__)

WELCOME = "👋 Hello! Welcome to AI Image Generator. What would you like me to generate for you? You can also send me a photo to restyle."
ASK_PROMPT = "Please send me a description of what you'd like me to generate!"
GENERATING = "Generating your image... Please wait! 🎨"
RESTYLING = "Restyling your photo... Please wait! 🎨"
GENERATED = "Here's your generated image! 🎉"
REUPLOAD = "I couldn't find your photo anymore. Please send it again 📷"
NOT_AN_IMAGE = "Please send your photo as an *image*."
APOLOGY = "Sorry, there was an error generating your image. Please try again."
UNAVAILABLE = "Sorry, the image service is unavailable right now. Please try again later."


class Action(str, Enum):
    GREET = "greet"
    REQUEST_PROMPT = "request_prompt"
    REQUEST_STYLE = "request_style"
    REQUEST_REUPLOAD = "request_reupload"
    GENERATE = "generate"
    TRANSFORM = "transform"
    FAILED = "failed"


class ConversationStateMachine:
    def __init__(
        self,
        session: SessionState,
        media: MediaLifecycleTracker,
        messenger: WhatsAppMessenger,
        generator: ImageGenerator,
        blobs,
        status_callback_url: Optional[str] = None,
        style_template_sid: str = "",
        greeted_ttl: float = 3600,
        style_ttl: float = 3600,
    ):
        self.session = session
        self.media = media
        self.messenger = messenger
        self.generator = generator
        self.blobs = blobs
        self.status_callback_url = status_callback_url
        self.style_template_sid = style_template_sid
        self.greeted_ttl = greeted_ttl
        self.style_ttl = style_ttl

    # --- outbound ---

    async def send(self, to: str, body: str, media_urls: Optional[List[str]] = None) -> str:
        """Send a message; media messages get a status callback and a pending-cleanup record."""
        callback = self.status_callback_url if media_urls else None
        sid = await self.messenger.send_message(to, body, media_urls, callback)
        if media_urls:
            filenames = [f for f in (extract_filename_from_media_url(u) for u in media_urls) if f]
            try:
                await self.media.record_pending_media(sid, filenames)
            except Exception:
                logger.exception(f"[media] failed to record media for message {sid}; files won't be cleaned up")
        return sid

    async def _safe_send(self, to: str, body: str) -> None:
        try:
            await self.send(to, body)
        except Exception as e:
            logger.warning(f"Failed to send reply to {to}: {e}")

    async def send_style_prompt(self, to: str) -> str:
        if self.style_template_sid:
            return await self.messenger.send_template(to, self.style_template_sid)
        return await self.send(to, style_menu_text())

    async def _deliver(self, to: str, result: GeneratedImage, body: str) -> str:
        data, content_type = await self.generator.finalize(result)
        url = await self.blobs.save(data, content_type)
        logger.info(f"Uploaded URL is {url}")
        return await self.send(to, body, [url])

    # --- flow ---

    async def handle(self, event: InboundMessage) -> Action:
        """
        Run one conversation turn. Never raises: failures are logged and turned
        into a best-effort apology, since the webhook has already been acknowledged.
        """
        try:
            return await self._dispatch(event)
        except ConfigurationError as e:
            logger.error(f"[webhook] configuration error for {event.sender}: {e}")
            await self._safe_send(event.sender, UNAVAILABLE)
        except Exception:
            logger.exception(f"[webhook] error processing message from {event.sender}")
            await self._safe_send(event.sender, APOLOGY)
        return Action.FAILED

    async def _dispatch(self, event: InboundMessage) -> Action:
        user = event.sender

        if await self.session.is_awaiting_style(user):
            return await self._on_style_reply(event)

        if event.num_media > 0 and event.media_url:
            return await self._on_photo(event)

        if not await self.session.is_greeted(user):
            await self.send(user, WELCOME)
            await self.session.mark_greeted(user, self.greeted_ttl)
            logger.info(f"[session] greeted {user}")
            return Action.GREET

        if event.text:
            return await self.generate_and_send(user, event.text, reset_greeting=True)

        await self.send(user, ASK_PROMPT)
        return Action.REQUEST_PROMPT

    async def _on_photo(self, event: InboundMessage) -> Action:
        user = event.sender
        data, fetched_type = await self.messenger.download_media(event.media_url)
        content_type = (event.media_content_type or fetched_type or "").split(";")[0].strip().lower()
        if not content_type.startswith("image/"):
            logger.info(f"[webhook] {user} sent unsupported media type {content_type}")
            await self.send(user, NOT_AN_IMAGE)
            return Action.REQUEST_REUPLOAD

        url = await self.blobs.save(data, content_type)
        filename = extract_filename_from_media_url(url)
        # path first, so anyone who sees waiting_for_style also finds the photo
        await self.session.set_pending_image_path(user, filename, self.style_ttl)
        await self.session.set_awaiting_style(user, self.style_ttl)
        logger.info(f"[session] {user} uploaded {filename}; waiting for style")

        await self.send_style_prompt(user)
        return Action.REQUEST_STYLE

    async def _on_style_reply(self, event: InboundMessage) -> Action:
        user = event.sender
        path = await self.session.get_pending_image_path(user)
        if not path or not await self.blobs.exists(path):
            logger.info(f"[session] pending photo for {user} is gone ({path})")
            await self.session.clear_style_flow(user)
            await self.send(user, REUPLOAD)
            return Action.REQUEST_REUPLOAD

        if not event.text:
            await self.send_style_prompt(user)
            return Action.REQUEST_STYLE

        style, instruction = resolve_style_instruction(event.text)
        label = style.label if style else "custom"
        logger.info(f"[transform] {user} picked style={label}")

        await self.send(user, RESTYLING)
        source = await self.blobs.read(path)
        result = await self.generator.transform(source, instruction, content_type_for(path))
        await self._deliver(user, result, f"Here's your {label} photo! 🎉" if style else "Here's your restyled photo! 🎉")

        await self.session.clear_style_flow(user)
        try:
            await self.blobs.delete(path)
        except Exception as e:
            logger.warning(f"[transform] could not delete source photo {path}: {e}")
        return Action.TRANSFORM

    async def generate_and_send(self, to: str, prompt: str, reset_greeting: bool = False) -> Action:
        logger.info(f"Generating image for prompt: {prompt} for WhatsApp: {to}")
        await self.send(to, GENERATING)
        result = await self.generator.generate(prompt)
        await self._deliver(to, result, GENERATED)
        if reset_greeting:
            # next message starts over with the welcome
            await self.session.clear_greeted(to)
        return Action.GENERATE
