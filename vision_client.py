"""
Gemini gateway for the image endpoints.

Wraps google-genai's Client.  Each call sends one instruction prompt plus
one inline image and returns the model's raw text; interpreting that text
is hazard_analysis.py's job.
"""

import logging
import time
from typing import Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from image_payload import image_mime_type
from prompts import HAZARD_PROMPTS, object_reader_prompt
from service_errors import MalformedModelOutput, UpstreamServiceError
from settings import VisionSettings
from wa_trace import get_trace

logger = logging.getLogger(__name__)

SERVICE_NAME = "Vision model"


class VisionModelClient:
    """Client for the generative vision model."""

    def __init__(self, settings: VisionSettings, client: Optional[genai.Client] = None):
        self.settings = settings
        if client is None:
            if settings.use_vertex:
                client = genai.Client(
                    vertexai=True,
                    project=settings.project_id,
                    location=settings.location,
                )
            else:
                client = genai.Client(api_key=settings.api_key)
        self.client = client

    def _generate(
        self,
        endpoint_name: str,
        prompt: str,
        image: bytes,
        image_format: str,
        response_mime_type: str,
    ) -> str:
        """Send prompt + image, return the concatenated text parts."""
        config = types.GenerateContentConfig(
            temperature=self.settings.temperature,
            max_output_tokens=self.settings.max_output_tokens,
            response_mime_type=response_mime_type,
        )
        contents = [
            types.Content(
                role="user",
                parts=[
                    types.Part.from_text(text=prompt),
                    types.Part.from_bytes(data=image, mime_type=image_mime_type(image_format)),
                ],
            )
        ]

        t0 = time.time()
        status_code = 200
        provider_status = ""
        try:
            response = self.client.models.generate_content(
                model=self.settings.model_name,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as e:
            status_code = e.code or 0
            provider_status = e.status or ""
            logger.error("Gemini %s failed: %s %s", endpoint_name, e.code, e.message)
            raise UpstreamServiceError(SERVICE_NAME, e.message or str(e), http_status=e.code) from e
        except Exception as e:
            status_code = 0
            logger.exception("Gemini %s transport failure", endpoint_name)
            raise UpstreamServiceError(SERVICE_NAME, str(e)) from e
        finally:
            trace = get_trace()
            if trace:
                trace.record_call(
                    service="gemini",
                    endpoint=endpoint_name,
                    elapsed_ms=int((time.time() - t0) * 1000),
                    status_code=status_code,
                    provider_status=provider_status,
                )

        candidates = response.candidates or []
        if not candidates:
            raise MalformedModelOutput("No response from vision model - candidates")
        content = candidates[0].content
        parts = (content.parts if content else None) or []
        texts = [p.text for p in parts if p.text]
        if not texts:
            raise MalformedModelOutput("No response from vision model - parts")
        return " ".join(texts)

    def analyze_hazards(self, image: bytes, image_format: str, variant: str = "structured") -> str:
        """Run the hazard prompt for ``variant`` ("structured" or "brief")."""
        prompt = HAZARD_PROMPTS[variant]
        mime = "application/json" if variant == "structured" else "text/plain"
        logger.info("Sending %s hazard request to %s", variant, self.settings.model_name)
        return self._generate("detect_hazards", prompt, image, image_format, mime)

    def read_objects(self, image: bytes, image_format: str, command: str = "") -> str:
        """Answer a spoken command about the image, as plain speech text."""
        text = self._generate(
            "object_reader",
            object_reader_prompt(command),
            image,
            image_format,
            "text/plain",
        )
        return " ".join(text.split())
