import base64
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Tuple

import httpx
import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI
from PIL import Image, UnidentifiedImageError

from errors import ConfigurationError, MalformedUpstreamResponse, TransientRemoteFailure

logger = logging.getLogger(__name__)


@dataclass
class GeneratedImage:
    url: Optional[str] = None
    data: Optional[bytes] = None
    content_type: str = "image/png"


def apply_overlay(image_bytes: bytes, mask_bytes: bytes) -> bytes:
    """Composite `mask` over the image at (0, 0), mask scaled to the image size. Returns PNG bytes."""
    try:
        with Image.open(BytesIO(image_bytes)) as im, Image.open(BytesIO(mask_bytes)) as mask:
            base = im.convert("RGBA")
            overlay = mask.convert("RGBA")
            if overlay.size != base.size:
                overlay = overlay.resize(base.size, Image.LANCZOS)
            base.alpha_composite(overlay)
            out = BytesIO()
            base.save(out, format="PNG")
            return out.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        raise MalformedUpstreamResponse(f"Could not composite overlay: {e}") from e


class ImageGenerator:
    """
    Text-to-image and image-to-image calls against OpenAI, or Azure OpenAI when
    only the Azure key is configured. Results come back as a URL or inline bytes.
    """

    def __init__(
        self,
        openai_api_key: str = "",
        azure_api_key: str = "",
        azure_endpoint: str = "",
        azure_deployment: str = "",
        azure_api_version: str = "2024-02-15-preview",
        image_model: str = "dall-e-3",
        edit_model: str = "gpt-image-1",
        size: str = "1024x1024",
        overlay_url: str = "",
        timeout: float = 120,
    ):
        self.openai_api_key = openai_api_key
        self.azure_api_key = azure_api_key
        self.azure_endpoint = azure_endpoint
        self.azure_deployment = azure_deployment
        self.azure_api_version = azure_api_version
        self.image_model = image_model
        self.edit_model = edit_model
        self.size = size
        self.overlay_url = overlay_url
        self.timeout = timeout
        self._client = None
        self._overlay: Optional[bytes] = None

    def client(self):
        if self._client is not None:
            return self._client
        if self.openai_api_key:
            self._client = AsyncOpenAI(api_key=self.openai_api_key, timeout=self.timeout)
        elif self.azure_api_key:
            if not self.azure_endpoint or not self.azure_deployment:
                raise ConfigurationError("AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_DEPLOYMENT_NAME must be set")
            self._client = AsyncAzureOpenAI(
                api_key=self.azure_api_key,
                azure_endpoint=self.azure_endpoint,
                azure_deployment=self.azure_deployment,
                api_version=self.azure_api_version,
                timeout=self.timeout,
            )
        else:
            raise ConfigurationError("No API key configured. Set either OPENAI_API_KEY or AZURE_OPENAI_API_KEY")
        return self._client

    def _model(self, default: str) -> str:
        return default if self.openai_api_key else self.azure_deployment

    @staticmethod
    def _first_image(response) -> GeneratedImage:
        data = getattr(response, "data", None) or []
        if not data:
            raise MalformedUpstreamResponse("Image response contained no data")
        item = data[0]
        if getattr(item, "b64_json", None):
            try:
                return GeneratedImage(data=base64.b64decode(item.b64_json))
            except ValueError as e:
                raise MalformedUpstreamResponse(f"Invalid base64 image payload: {e}") from e
        if getattr(item, "url", None):
            return GeneratedImage(url=item.url)
        raise MalformedUpstreamResponse("Image response had neither url nor b64_json")

    async def generate(self, prompt: str) -> GeneratedImage:
        client = self.client()
        logger.info(f"[generate] prompt={prompt!r} size={self.size}")
        try:
            response = await client.images.generate(
                model=self._model(self.image_model),
                prompt=prompt,
                size=self.size,
                n=1,
            )
        except openai.AuthenticationError as e:
            raise ConfigurationError(f"Image API rejected credentials: {e}") from e
        except openai.OpenAIError as e:
            raise TransientRemoteFailure(f"Image generation failed: {e}") from e
        return self._first_image(response)

    async def transform(self, image: bytes, instruction: str, content_type: str = "image/png") -> GeneratedImage:
        client = self.client()
        ext = {"image/jpeg": "jpg", "image/jpg": "jpg", "image/webp": "webp"}.get(content_type, "png")
        logger.info(f"[transform] instruction={instruction[:80]!r} source={len(image)} bytes")
        try:
            response = await client.images.edit(
                model=self._model(self.edit_model),
                image=(f"source.{ext}", image, content_type),
                prompt=instruction,
                size=self.size,
            )
        except openai.AuthenticationError as e:
            raise ConfigurationError(f"Image API rejected credentials: {e}") from e
        except openai.OpenAIError as e:
            raise TransientRemoteFailure(f"Image transform failed: {e}") from e
        return self._first_image(response)

    async def _download(self, url: str) -> Tuple[bytes, str]:
        try:
            async with httpx.AsyncClient(timeout=60, follow_redirects=True) as client:
                r = await client.get(url)
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientRemoteFailure(f"Failed to download {url}: {e}") from e
        return r.content, r.headers.get("Content-Type", "image/png").split(";")[0].strip()

    async def _overlay_bytes(self) -> Optional[bytes]:
        if not self.overlay_url:
            return None
        if self._overlay is None:
            self._overlay, _ = await self._download(self.overlay_url)
        return self._overlay

    async def finalize(self, result: GeneratedImage) -> Tuple[bytes, str]:
        """Fetch the image bytes (if only a URL came back) and apply the overlay mask, if configured."""
        if result.data is not None:
            data, content_type = result.data, result.content_type
        elif result.url:
            data, content_type = await self._download(result.url)
        else:
            raise MalformedUpstreamResponse("Generated image has neither url nor data")

        mask = await self._overlay_bytes()
        if mask:
            data, content_type = apply_overlay(data, mask), "image/png"
        return data, content_type
