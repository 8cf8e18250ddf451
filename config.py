# config.py
import os
from dotenv import load_dotenv

load_dotenv()

def _get(name: str, default: str | None = None, *, required: bool = False) -> str:
    v = os.getenv(name, default)
    if required and (v is None or v == ""):
        raise RuntimeError(f"Missing required env var: {name}")
    return v or ""

def _get_int(name: str, default: int) -> int:
    raw = _get(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Env var {name} must be an integer, got {raw!r}")

class Settings:
    # MongoDB (session + media records)
    MONGO_URL         = _get("MONGO_URL", "mongodb://localhost:27017")
    MONGO_DB          = _get("MONGO_DB", "aivr")
    MONGO_COLLECTION  = _get("MONGO_COLLECTION", "aivr_storage")

    # Twilio WhatsApp
    TWILIO_ACCOUNT_SID          = _get("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN           = _get("TWILIO_AUTH_TOKEN")
    TWILIO_WHATSAPP_FROM_NUMBER = _get("TWILIO_WHATSAPP_FROM_NUMBER")
    TWILIO_STYLE_TEMPLATE_SID   = _get("TWILIO_STYLE_TEMPLATE_SID")  # leave empty for plain-text style menu

    # OpenAI / Azure OpenAI
    OPENAI_API_KEY     = _get("OPENAI_API_KEY")
    OPENAI_IMAGE_MODEL = _get("OPENAI_IMAGE_MODEL", "dall-e-3")
    OPENAI_EDIT_MODEL  = _get("OPENAI_EDIT_MODEL", "gpt-image-1")
    IMAGE_SIZE         = _get("IMAGE_SIZE", "1024x1024")
    AZURE_OPENAI_API_KEY         = _get("AZURE_OPENAI_API_KEY")
    AZURE_OPENAI_ENDPOINT        = _get("AZURE_OPENAI_ENDPOINT")
    AZURE_OPENAI_DEPLOYMENT_NAME = _get("AZURE_OPENAI_DEPLOYMENT_NAME")
    AZURE_OPENAI_API_VERSION     = _get("AZURE_OPENAI_API_VERSION", "2024-02-15-preview")

    # Optional mask composited over every outgoing image
    OVERLAY_MASK_URL = _get("OVERLAY_MASK_URL", "")

    # Public URL of this service (media links + status callbacks)
    NGROK_URL       = _get("NGROK_URL", "")
    PUBLIC_BASE_URL = _get("PUBLIC_BASE_URL", "")
    BASE_URL        = _get("BASE_URL", "")
    PORT            = _get_int("PORT", 8000)

    # Static shared secret for the direct-send endpoints
    API_KEY = _get("API_KEY", "")

    # Media storage
    STORAGE_BACKEND = _get("STORAGE_BACKEND", "local").lower()  # "local" | "s3"
    UPLOAD_DIR      = _get("UPLOAD_DIR", "temp")
    AWS_REGION      = _get("AWS_REGION", "ap-south-1")
    S3_MEDIA_BUCKET = _get("S3_MEDIA_BUCKET", "")
    S3_MEDIA_PREFIX = _get("S3_MEDIA_PREFIX", "aivr/media")

    # Session / cleanup TTLs (seconds)
    GREETED_TTL_SECONDS      = _get_int("GREETED_TTL_SECONDS", 3600)
    STYLE_TTL_SECONDS        = _get_int("STYLE_TTL_SECONDS", 3600)
    MEDIA_RECORD_TTL_SECONDS = _get_int("MEDIA_RECORD_TTL_SECONDS", 7 * 24 * 3600)

    LOG_LEVEL = _get("LOG_LEVEL", "INFO").upper()

    @property
    def public_base_url(self) -> str:
        base = self.NGROK_URL or self.PUBLIC_BASE_URL or self.BASE_URL or f"http://localhost:{self.PORT}"
        return base.rstrip("/")

settings = Settings()
