from fastapi import FastAPI, Request, Query, BackgroundTasks, HTTPException
from fastapi.responses import JSONResponse, RedirectResponse, Response
from dataclasses import dataclass
from pydantic import BaseModel
from typing import Any, Callable, Optional
import base64
import logging
import time

from config import settings
from conversation import ConversationStateMachine
from db import get_document_store
from errors import ConfigurationError
from image_generation import ImageGenerator
from media_tracker import MediaLifecycleTracker
from session_state import SessionState
from storage import content_type_for, get_blob_storage, safe_filename
from ttl_store import TTLStore
from whatsapp_utils import InboundMessage, StatusCallback, WhatsAppMessenger

app = FastAPI()

# --- LOGGING CONFIG ---
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


# --- Models ---
class GeneratePayload(BaseModel):
    prompt: str = ""


@dataclass
class BotContext:
    store: TTLStore
    session: SessionState
    media: MediaLifecycleTracker
    messenger: WhatsAppMessenger
    generator: ImageGenerator
    blobs: Any
    conversation: ConversationStateMachine
    api_key: str = ""


def build_context(
    document_store=None,
    blobs=None,
    messenger=None,
    generator=None,
    clock: Callable[[], float] = time.time,
    api_key: Optional[str] = None,
) -> BotContext:
    """Wire the store, collaborators and conversation flow. Every piece can be swapped (tests pass fakes)."""
    store = TTLStore(
        document_store or get_document_store(),
        settings.MONGO_DB,
        settings.MONGO_COLLECTION,
        clock=clock,
    )
    blobs = blobs or get_blob_storage()
    messenger = messenger or WhatsAppMessenger(
        settings.TWILIO_ACCOUNT_SID,
        settings.TWILIO_AUTH_TOKEN,
        settings.TWILIO_WHATSAPP_FROM_NUMBER,
    )
    generator = generator or ImageGenerator(
        openai_api_key=settings.OPENAI_API_KEY,
        azure_api_key=settings.AZURE_OPENAI_API_KEY,
        azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
        azure_deployment=settings.AZURE_OPENAI_DEPLOYMENT_NAME,
        azure_api_version=settings.AZURE_OPENAI_API_VERSION,
        image_model=settings.OPENAI_IMAGE_MODEL,
        edit_model=settings.OPENAI_EDIT_MODEL,
        size=settings.IMAGE_SIZE,
        overlay_url=settings.OVERLAY_MASK_URL,
    )
    session = SessionState(store)
    media = MediaLifecycleTracker(store, blobs, record_ttl=settings.MEDIA_RECORD_TTL_SECONDS)
    conversation = ConversationStateMachine(
        session,
        media,
        messenger,
        generator,
        blobs,
        status_callback_url=f"{settings.public_base_url}/status-webhook",
        style_template_sid=settings.TWILIO_STYLE_TEMPLATE_SID,
        greeted_ttl=settings.GREETED_TTL_SECONDS,
        style_ttl=settings.STYLE_TTL_SECONDS,
    )
    return BotContext(
        store=store,
        session=session,
        media=media,
        messenger=messenger,
        generator=generator,
        blobs=blobs,
        conversation=conversation,
        api_key=settings.API_KEY if api_key is None else api_key,
    )


@app.on_event("startup")
async def _build_bot_context():
    if getattr(app.state, "bot", None) is None:
        app.state.bot = build_context()
        logger.info(f"Bot context ready | public_base_url={settings.public_base_url} | storage={settings.STORAGE_BACKEND}")


def get_bot(request: Request) -> BotContext:
    return request.app.state.bot


def _twiml_ack() -> Response:
    return Response(content=EMPTY_TWIML, media_type="text/xml")


def _check_api_key(bot: BotContext, api_key: Optional[str]) -> None:
    if not bot.api_key or api_key != bot.api_key:
        raise HTTPException(status_code=401, detail="API Key incorrect")


# --- background jobs (detached: nobody awaits their outcome) ---

async def process_inbound(bot: BotContext, event: InboundMessage) -> None:
    action = await bot.conversation.handle(event)
    logger.info(f"[webhook] {event.sender} -> {action.value}")


async def process_status(bot: BotContext, callback: StatusCallback) -> None:
    try:
        await bot.media.handle_status(callback.message_id, callback.status)
    except Exception:
        logger.exception(f"[status] error processing status callback for {callback.message_id}")


async def generate_for_recipient(bot: BotContext, to: str, prompt: str) -> None:
    try:
        await bot.conversation.generate_and_send(to, prompt)
        logger.info(f"[generate] image generation complete for {to}")
    except Exception:
        logger.exception(f"[generate] failed for {to}")


# --- routes ---

@app.get("/root")
def root():
    logger.info("Root check — webhook is live.")
    return {"status": "ok", "message": "Webhook server is running"}


@app.post("/webhook")
async def receive_webhook(request: Request, background_tasks: BackgroundTasks):
    form = await request.form()
    event = InboundMessage.from_form(form)
    if not event.sender:
        return JSONResponse({"message": "Missing From number"}, status_code=400)

    logger.info(f"Received WhatsApp message from {event.sender}: {event.text!r} media={event.num_media}")
    # Twilio wants an answer within a few seconds; the turn itself runs after the response
    background_tasks.add_task(process_inbound, get_bot(request), event)
    return _twiml_ack()


@app.post("/status-webhook")
async def receive_status(request: Request, background_tasks: BackgroundTasks):
    form = await request.form()
    callback = StatusCallback.from_form(form)
    logger.info(f"[status] MessageSid: {callback.message_id}, Status: {callback.status}")
    if callback.message_id:
        background_tasks.add_task(process_status, get_bot(request), callback)
    return _twiml_ack()


@app.get("/media/{filename}")
async def serve_media(filename: str, request: Request):
    bot = get_bot(request)
    name = safe_filename(filename)
    if not name:
        return JSONResponse({"message": "Missing filename"}, status_code=400)
    try:
        data = await bot.blobs.read(name)
    except FileNotFoundError:
        return JSONResponse({"message": "File not found"}, status_code=404)
    return Response(
        content=data,
        media_type=content_type_for(name),
        headers={"Cache-Control": "public, max-age=3600"},
    )


@app.get("/aivr")
async def aivr(
    request: Request,
    background_tasks: BackgroundTasks,
    api_key: Optional[str] = Query(None),
    prompt: Optional[str] = Query(None),
    to: Optional[str] = Query(None),
):
    bot = get_bot(request)
    _check_api_key(bot, api_key)
    if not prompt:
        return JSONResponse({"message": "Missing prompt"}, status_code=400)
    if not to:
        return JSONResponse({"message": "Missing 'to'"}, status_code=400)

    background_tasks.add_task(generate_for_recipient, bot, to, prompt)
    return {"message": "Image generation started"}


@app.get("/message")
async def send_media_message(
    request: Request,
    api_key: Optional[str] = Query(None),
    to: Optional[str] = Query(None),
    url: Optional[str] = Query(None),
):
    bot = get_bot(request)
    _check_api_key(bot, api_key)
    if not to:
        return JSONResponse({"message": "Missing 'to'"}, status_code=400)
    if not url:
        return JSONResponse({"message": "Missing 'url'"}, status_code=400)

    try:
        sid = await bot.conversation.send(to, "Here's your image! 🎉", [url])
    except ConfigurationError as e:
        logger.error(f"[message] {e}")
        return JSONResponse({"error": "Messaging is not configured"}, status_code=500)
    except Exception:
        logger.exception(f"[message] failed to send {url} to {to}")
        return JSONResponse({"error": "Failed to send message"}, status_code=500)
    return {"status": "complete", "sid": sid}


@app.get("/image")
async def image(request: Request, api_key: Optional[str] = Query(None), prompt: Optional[str] = Query(None)):
    bot = get_bot(request)
    _check_api_key(bot, api_key)
    if not prompt:
        return JSONResponse({"message": "Missing prompt"}, status_code=400)

    try:
        result = await bot.generator.generate(prompt)
        data, content_type = await bot.generator.finalize(result)
        end_image_url = await bot.blobs.save(data, content_type)
    except ConfigurationError as e:
        logger.error(f"[image] {e}")
        return JSONResponse({"error": "Image service is not configured"}, status_code=500)
    except Exception:
        logger.exception("[image] error generating image")
        return JSONResponse({"error": "Image generation failed"}, status_code=500)

    logger.info(f"[image] redirecting to {end_image_url}")
    return RedirectResponse(end_image_url, status_code=307)


@app.post("/generate")
async def generate(request: Request, payload: Optional[GeneratePayload] = None, api_key: Optional[str] = Query(None)):
    bot = get_bot(request)
    _check_api_key(bot, api_key)
    if payload is None or not payload.prompt:
        return JSONResponse({"message": "Missing prompt"}, status_code=400)
    prompt = payload.prompt

    try:
        result = await bot.generator.generate(prompt)
    except ConfigurationError as e:
        logger.error(f"[generate] {e}")
        return JSONResponse({"error": "Image service is not configured"}, status_code=500)
    except Exception:
        logger.exception("[generate] error generating image")
        return JSONResponse({"error": "Image generation failed"}, status_code=500)

    b64 = base64.b64encode(result.data).decode("utf-8") if result.data is not None else None
    return {"url": result.url, "b64_json": b64}


@app.get("/poll")
async def poll(request: Request, api_key: Optional[str] = Query(None), id: Optional[str] = Query(None)):
    bot = get_bot(request)
    _check_api_key(bot, api_key)
    if not id:
        return JSONResponse({"message": "Missing id"}, status_code=400)
    try:
        data = await bot.store.get(id)
    except Exception:
        logger.exception(f"[poll] lookup failed for {id}")
        return JSONResponse({"message": "Lookup failed"}, status_code=500)
    if data is None:
        return JSONResponse({"message": "No data found"}, status_code=404)
    return data


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.PORT)
