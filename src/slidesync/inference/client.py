"""InferenceClient boundary and the default OpenAI-compatible HTTP backend."""
import base64
import time
from typing import Protocol

import requests

from slidesync.config import get_api_key, get_endpoint, get_model_name
from slidesync.errors import EmptyInferenceResponseError, InferenceError
from slidesync.inference.prompt import AlignmentRequest, ImagePart, TextPart


class InferenceClient(Protocol):
    def infer(self, request: AlignmentRequest) -> str:
        """Send *request* once and return the raw model text.

        Raises EmptyInferenceResponseError when the backend produces no text.
        """
        ...


class ChatCompletionsClient:
    """Client for any server exposing ``/v1/chat/completions`` with image input.

    Works with llama-server (``--mmproj``), vLLM and hosted gateways. One POST
    per :meth:`infer` call; retries are left to the caller.

    Usage::

        client = ChatCompletionsClient("http://127.0.0.1:8080", model="qwen2.5-vl")
        client.wait_until_ready()
        text = client.infer(request)

    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        timeout_s: float = 600.0,
        temperature: float = 0.1,
    ) -> None:
        # Resolved at construction so env changes between runs are honoured.
        self.base_url = (base_url or get_endpoint()).rstrip("/")
        self.model = model or get_model_name()
        self.api_key = api_key if api_key is not None else get_api_key()
        self.timeout_s = timeout_s
        self.temperature = temperature

    def build_payload(self, request: AlignmentRequest) -> dict:
        content: list[dict] = []
        for part in request.parts:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                b64 = base64.b64encode(part.data).decode("ascii")
                content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{part.mime_type};base64,{b64}"},
                })
        return {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": request.max_output_tokens,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "transitions", "schema": request.schema},
            },
            "messages": [{"role": "user", "content": content}],
        }

    def infer(self, request: AlignmentRequest) -> str:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            r = requests.post(
                f"{self.base_url}/v1/chat/completions",
                json=self.build_payload(request),
                headers=headers,
                timeout=self.timeout_s,
            )
            r.raise_for_status()
            body = r.json()
        except requests.RequestException as exc:
            raise InferenceError(str(exc)) from exc
        except ValueError as exc:
            raise InferenceError(f"response body is not JSON: {exc}") from exc

        try:
            choice = body["choices"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise InferenceError(f"unexpected response shape: {exc!r}") from exc

        if choice.get("finish_reason") == "content_filter":
            raise EmptyInferenceResponseError(
                "The model returned an empty response because a content safety filter was triggered."
            )
        text = (choice.get("message") or {}).get("content")
        if not isinstance(text, str) or not text.strip():
            raise EmptyInferenceResponseError()
        return text

    def wait_until_ready(self, timeout_s: float = 120.0) -> None:
        """Poll /health until the server is ready or the timeout is exceeded."""
        deadline = time.monotonic() + timeout_s

        while time.monotonic() < deadline:
            try:
                r = requests.get(f"{self.base_url}/health", timeout=2)
                if r.status_code == 200:
                    return
            except requests.RequestException:
                pass

            time.sleep(1.0)

        raise InferenceError(f"{self.base_url} did not become healthy within {timeout_s}s")
