"""HTTP client for the hosted vision model (Anthropic Messages API).

Transport only: one request per call, no retry, no streaming. Any failure
is raised as ExternalServiceError; interpreting the reply is the
extraction module's job.
"""

import logging

import httpx

from config import settings
from errors import ExternalServiceError

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class VisionClient:
    """Sends a base64 image plus an instruction, returns the model's text."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        timeout: int | None = None,
        connect_timeout: int | None = None,
    ):
        self._model = model or settings.VISION_MODEL
        self._max_tokens = max_tokens if max_tokens is not None else settings.VISION_MAX_TOKENS

        read_timeout = timeout if timeout is not None else settings.VISION_TIMEOUT_SECONDS
        conn_timeout = connect_timeout if connect_timeout is not None else settings.CONNECT_TIMEOUT_SECONDS

        self._client = httpx.Client(
            base_url=(base_url or settings.VISION_API_URL).rstrip("/"),
            headers={
                "x-api-key": api_key if api_key is not None else settings.ANTHROPIC_API_KEY,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            timeout=httpx.Timeout(
                connect=float(conn_timeout),
                read=float(read_timeout),
                write=30.0,
                pool=30.0,
            ),
        )

    def close(self):
        self._client.close()

    def extract(self, image_b64: str, mime_type: str, instruction: str) -> str:
        """Return the raw text reply for one image.

        Raises ExternalServiceError on transport errors and non-200 replies.
        """
        payload = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": mime_type,
                                "data": image_b64,
                            },
                        },
                        {"type": "text", "text": instruction},
                    ],
                }
            ],
        }

        try:
            resp = self._client.post("/v1/messages", json=payload)
        except httpx.HTTPError as e:
            logger.error("Vision model request failed: %s", e)
            raise ExternalServiceError(f"Vision model request failed: {e}") from e

        if resp.status_code != 200:
            detail = _error_message(resp)
            logger.error("Vision model error %d: %s", resp.status_code, detail)
            raise ExternalServiceError(f"Vision model error ({resp.status_code}): {detail}")

        try:
            body = resp.json()
        except ValueError as e:
            raise ExternalServiceError(f"Vision model returned a non-JSON body: {resp.text[:200]}") from e

        blocks = (body.get("content") or []) if isinstance(body, dict) else None
        if not isinstance(blocks, list) or not all(isinstance(b, dict) for b in blocks):
            raise ExternalServiceError(f"Vision model returned an unexpected body: {resp.text[:200]}")

        return "".join(str(b.get("text", "")) for b in blocks if b.get("type") == "text")


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return resp.text or f"HTTP {resp.status_code}"
