"""
Gemini "Nano Banana" Image Generation Service
Uses native Gemini image generation models (gemini-2.5-flash-image) with
references passed as Files API handles.
Documentation: https://ai.google.dev/gemini-api/docs/image-generation
"""

import asyncio
import io
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from google import genai
from google.genai import types

from app.core.config import settings
from app.core.errors import UpstreamFailure

logger = logging.getLogger(__name__)

# Internal tool - prompts are operator controlled
SAFETY_SETTINGS = [
    types.SafetySetting(category="HARM_CATEGORY_HARASSMENT", threshold="BLOCK_ONLY_HIGH"),
    types.SafetySetting(category="HARM_CATEGORY_HATE_SPEECH", threshold="BLOCK_ONLY_HIGH"),
    types.SafetySetting(category="HARM_CATEGORY_SEXUALLY_EXPLICIT", threshold="BLOCK_ONLY_HIGH"),
    types.SafetySetting(category="HARM_CATEGORY_DANGEROUS_CONTENT", threshold="BLOCK_ONLY_HIGH"),
]


@dataclass(frozen=True)
class FileHandle:
    """Provider-side pointer to uploaded bytes."""
    uri: str
    mime_type: str = "image/png"


@dataclass
class GeneratedImage:
    data: bytes
    mime_type: str = "image/png"


@dataclass
class GenerationOutput:
    """Images and text returned by one generation call."""
    images: List[GeneratedImage] = field(default_factory=list)
    text: str = ""
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class GeminiImageService:
    """Generation provider backed by the Gemini API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[genai.Client] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        if not self.api_key and client is None:
            logger.warning("[Gemini] GEMINI_API_KEY is not set. All model calls will fail until it is configured.")
        self._client = client
        self.model_name = model_name or settings.GEMINI_MODEL or "gemini-2.5-flash-image"
        self.timeout_seconds = (
            settings.GENERATION_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        )
        logger.info(f"[Gemini] Initialized with model: {self.model_name}")

    @property
    def client(self) -> genai.Client:
        """Created on first use so a missing key only fails the calls that need it."""
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key or None)
        return self._client

    async def upload_file(
        self,
        data: bytes,
        mime_type: str = "image/png",
        display_name: str = "reference.png",
    ) -> FileHandle:
        """
        Upload bytes to the Gemini Files API.

        Raises:
            UpstreamFailure: on any upload error
        """
        try:
            uploaded = await self.client.aio.files.upload(
                file=io.BytesIO(data),
                config=types.UploadFileConfig(mime_type=mime_type, display_name=display_name),
            )
        except Exception as e:
            raise UpstreamFailure(f"Gemini file upload failed: {e}") from e

        uri = uploaded.uri or uploaded.name
        if not uri:
            raise UpstreamFailure("Gemini file upload returned no file URI")
        logger.debug(f"[Gemini] Uploaded {len(data)} bytes as {uri}")
        return FileHandle(uri=uri, mime_type=mime_type)

    def _build_config(self, aspect_ratio: str, image_size: str, image_only: bool) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            response_modalities=["IMAGE"] if image_only else ["TEXT", "IMAGE"],
            image_config=types.ImageConfig(aspect_ratio=aspect_ratio, image_size=image_size),
            safety_settings=SAFETY_SETTINGS,
        )

    async def generate(
        self,
        file_handles: Sequence[FileHandle],
        prompt: str,
        aspect_ratio: Optional[str] = None,
        image_size: Optional[str] = None,
        image_only: bool = False,
    ) -> GenerationOutput:
        """
        Generate (or edit) an image from ordered reference handles and a prompt.

        The handles become "image 1", "image 2", ... in prompt order.

        Raises:
            UpstreamFailure: on API errors or timeout
        """
        parts = [
            types.Part.from_uri(file_uri=handle.uri, mime_type=handle.mime_type or "image/png")
            for handle in file_handles
        ]
        parts.append(types.Part.from_text(text=prompt or ""))

        config = self._build_config(
            aspect_ratio or settings.DEFAULT_ASPECT_RATIO,
            image_size or settings.DEFAULT_IMAGE_SIZE,
            image_only,
        )

        logger.info(
            f"[Gemini] Generating with {len(file_handles)} reference(s), "
            f"aspect {aspect_ratio}, image_only={image_only}"
        )
        try:
            call = self.client.aio.models.generate_content(
                model=self.model_name,
                contents=[types.Content(role="user", parts=parts)],
                config=config,
            )
            if self.timeout_seconds and self.timeout_seconds > 0:
                response = await asyncio.wait_for(call, timeout=self.timeout_seconds)
            else:
                response = await call
        except asyncio.TimeoutError as e:
            raise UpstreamFailure(f"Gemini generation timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            raise UpstreamFailure(f"Gemini image generation failed: {e}") from e

        return self._parse_response(response)

    def _parse_response(self, response) -> GenerationOutput:
        output = GenerationOutput()

        candidates = getattr(response, "candidates", None) or []
        if candidates:
            candidate = candidates[0]
            content = getattr(candidate, "content", None)
            for part in (getattr(content, "parts", None) or []):
                inline = getattr(part, "inline_data", None)
                if inline is not None and inline.data:
                    output.images.append(
                        GeneratedImage(data=inline.data, mime_type=inline.mime_type or "image/png")
                    )
                elif getattr(part, "text", None):
                    output.text += part.text

            if not output.images:
                logger.warning(f"[Gemini] No image in response. Finish Reason: {candidate.finish_reason}")

        usage = getattr(response, "usage_metadata", None)
        if usage is not None:
            output.output_tokens = getattr(usage, "candidates_token_count", None)
            output.total_tokens = getattr(usage, "total_token_count", None)

        return output
