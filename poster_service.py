"""Gemini adapter that turns a product photo into an advertisement poster.

One call = one request. The API key is resolved on every call, nothing is
cached or retried, and every failure is raised as a PosterGenerationError for
the session layer to word.
"""
import base64
import binascii
import logging
from typing import Any, Callable, List, Optional, Tuple

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from credentials import CredentialProvider
from errors import (
    EmptyResponseError,
    InvalidSourceImage,
    MissingCredentialError,
    NoImageRenderedError,
    PosterGenerationError,
    SafetyBlockedError,
    TransportError,
)
from images import PNG_DATA_URL_PREFIX, data_url_payload
from schemas import PosterConfig
from settings import PRO_MODEL, STANDARD_MODEL

logger = logging.getLogger(__name__)

SOURCE_MIME_TYPE = "image/png"


def build_prompt(config: PosterConfig) -> str:
    return f"""
        As a professional commercial graphic designer, transform this product photo into a high-end promotional poster.

        PRODUCT SPECIFICATIONS:
        - Name: "{config.productName}"
        - Price: "{config.price}"
        - Marketing Details: "{config.details}"

        DESIGN RULES:
        1. Keep the original product shape and details intact. Do not distort the product.
        2. Enhance the lighting to professional studio quality.
        3. Create a premium background that complements the product category.
        4. Add clean, modern typography for the title and price.
        5. The final output must be a single cohesive advertisement image.
        6. Required Aspect Ratio: {config.ratio}.
    """


def decode_source_image(image: str) -> bytes:
    try:
        return base64.b64decode(data_url_payload(image), validate=True)
    except binascii.Error as e:
        raise InvalidSourceImage(f"Source image payload is not valid Base64: {e}") from e


def build_request(
    image: str,
    config: PosterConfig,
    model_name: str,
    include_image_size: bool,
) -> Tuple[str, List[types.Part], types.GenerateContentConfig]:
    image_config = {"aspect_ratio": config.ratio}
    # image_size is only understood by the pro model
    if include_image_size:
        image_config["image_size"] = config.quality

    contents = [
        types.Part.from_bytes(data=decode_source_image(image), mime_type=SOURCE_MIME_TYPE),
        types.Part.from_text(text=build_prompt(config)),
    ]
    generation_config = types.GenerateContentConfig(
        image_config=types.ImageConfig(**image_config),
    )
    return model_name, contents, generation_config


def _enum_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def extract_poster(response: Any) -> str:
    """Decode a generate_content response into a PNG data URL.

    Only the first candidate is inspected. A SAFETY finish reason wins over any
    image it may carry, and the first part with inline data wins over later ones.
    """
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        raise EmptyResponseError(
            "The AI returned no response. Try a clearer product photo."
        )

    candidate = candidates[0]
    if _enum_name(getattr(candidate, "finish_reason", None)) == "SAFETY":
        raise SafetyBlockedError(
            "Content was blocked by the AI safety filter (finish reason SAFETY). "
            "Try a different product description or image."
        )

    content = getattr(candidate, "content", None)
    for part in getattr(content, "parts", None) or []:
        inline_data = getattr(part, "inline_data", None)
        if inline_data is None or not inline_data.data:
            continue
        data = inline_data.data
        if isinstance(data, bytes):
            data = base64.b64encode(data).decode("ascii")
        return PNG_DATA_URL_PREFIX + data

    raise NoImageRenderedError(
        "The AI replied with text but did not render an image. Try shortening the details."
    )


def _default_client_factory(api_key: str) -> genai.Client:
    return genai.Client(api_key=api_key)


class PosterGenerator:
    def __init__(
        self,
        credentials: CredentialProvider,
        standard_model: str = STANDARD_MODEL,
        pro_model: str = PRO_MODEL,
        client_factory: Callable[[str], Any] = _default_client_factory,
    ):
        self.credentials = credentials
        self.standard_model = standard_model
        self.pro_model = pro_model
        self.client_factory = client_factory

    def model_for(self, use_elevated_tier: bool) -> str:
        return self.pro_model if use_elevated_tier else self.standard_model

    async def generate(self, image: str, config: PosterConfig, use_elevated_tier: bool = False) -> str:
        api_key = self.credentials.resolve_api_key(use_elevated_tier)
        if not api_key:
            raise MissingCredentialError(
                "API key not found. Set GEMINI_API_KEY (or GEMINI_PRO_API_KEY for Pro) in the environment."
            )

        model_name, contents, generation_config = build_request(
            image, config, self.model_for(use_elevated_tier), include_image_size=use_elevated_tier
        )
        logger.info("Generating poster for %r with %s (%s)", config.productName, model_name, config.ratio)

        client = self.client_factory(api_key)
        try:
            response = await client.aio.models.generate_content(
                model=model_name,
                contents=contents,
                config=generation_config,
            )
            return extract_poster(response)
        except PosterGenerationError as e:
            logger.error("Poster generation failed (%s): %s", e.kind.value, e.message)
            raise
        except genai_errors.APIError as e:
            logger.error("Gemini API error %s: %s", e.code, e)
            raise TransportError(str(e), status_code=e.code) from e
        except Exception as e:
            # transport errors from whichever HTTP stack the SDK picked, timeouts, malformed responses
            logger.error("Gemini request failed: %r", e)
            raise TransportError(str(e) or type(e).__name__) from e
        finally:
            await client.aio.aclose()
