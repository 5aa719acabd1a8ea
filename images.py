import base64
import binascii
import re
from io import BytesIO

import httpx
from PIL import Image, UnidentifiedImageError

from errors import InvalidSourceImage, SourceImageFetchError

PNG_DATA_URL_PREFIX = "data:image/png;base64,"
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024

FETCH_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Referer": "https://www.google.com/"
}


def data_url_payload(data_url: str) -> str:
    """Everything after the first comma of a data URL."""
    _, sep, payload = data_url.partition(",")
    if not sep:
        raise InvalidSourceImage("Image must be a data URL with a ',' after its header.")
    return payload


def to_png_data_url(png_bytes: bytes) -> str:
    return PNG_DATA_URL_PREFIX + base64.b64encode(png_bytes).decode("ascii")


def data_url_to_bytes(data_url: str) -> bytes:
    try:
        return base64.b64decode(data_url_payload(data_url), validate=True)
    except binascii.Error as e:
        raise InvalidSourceImage(f"Image payload is not valid Base64: {e}") from e


def decode_image_payload(value: str) -> bytes:
    """Accept either a data URL (as a browser FileReader produces) or bare Base64."""
    value = value.strip()
    if value.startswith("data:"):
        return data_url_to_bytes(value)
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as e:
        raise InvalidSourceImage(f"Image payload is not valid Base64: {e}") from e


def normalize_source_image(raw: bytes, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> str:
    """Re-encode an uploaded photo as PNG, since requests declare image/png."""
    if not raw:
        raise InvalidSourceImage("Uploaded image is empty.")
    if len(raw) > max_bytes:
        raise InvalidSourceImage(
            f"Uploaded image is {len(raw)} bytes; the limit is {max_bytes} bytes."
        )
    try:
        image = Image.open(BytesIO(raw))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise InvalidSourceImage(f"Could not read the uploaded image: {e}") from e

    if image.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        image = image.convert("RGBA" if "A" in image.getbands() else "RGB")

    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return to_png_data_url(buffer.getvalue())


async def fetch_source_image(url: str, timeout: float = 15, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> bytes:
    """Download a product photo, giving up as soon as the body passes max_bytes."""
    async with httpx.AsyncClient() as client:
        try:
            async with client.stream(
                "GET", url, follow_redirects=True, timeout=timeout, headers=FETCH_HEADERS
            ) as response:
                response.raise_for_status()
                content_type = response.headers.get("content-type", "")
                if not content_type.startswith("image/"):
                    raise SourceImageFetchError("URL is not a direct image link.")

                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > max_bytes:
                    raise InvalidSourceImage(
                        f"Remote image is {declared} bytes; the limit is {max_bytes} bytes."
                    )

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > max_bytes:
                        raise InvalidSourceImage(
                            f"Remote image is larger than the {max_bytes} byte limit."
                        )
        except httpx.HTTPStatusError as e:
            raise SourceImageFetchError(
                f"Image server error: {e.response.status_code}", status_code=e.response.status_code
            ) from e
        except httpx.RequestError as e:
            raise SourceImageFetchError(f"Failed to fetch image: {e}") from e

    return bytes(body)


def download_filename(product_name: str) -> str:
    slug = re.sub(r"\s+", "-", product_name)
    return f"adcraft-{slug}.png"
