import json
import os
from typing import Any, Dict, Optional

import requests

from .errors import ModelConfigurationError, UpstreamGenerationError, UpstreamTimeoutError


def _extract_json(text: str) -> Optional[Dict[str, Any]]:
    if not text:
        return None
    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else None
    except ValueError:
        pass
    # Models occasionally wrap the object in prose or a code fence
    start = text.find('{')
    end = text.rfind('}')
    if start != -1 and end != -1 and end > start:
        try:
            parsed = json.loads(text[start:end + 1])
            return parsed if isinstance(parsed, dict) else None
        except ValueError:
            pass
    return None


class ModelClient:
    """Client for an OpenAI-compatible chat completions endpoint.

    Built once at startup with explicit settings and injected into the
    handlers that need it. Nothing touches the network or checks the API key
    until the first generation call, so an unconfigured deployment still
    boots and serves every other route.
    """

    def __init__(
        self,
        http_base: str = "https://api.openai.com",
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        timeout: float = 60.0,
    ) -> None:
        self.http_base = http_base
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._session: Optional[requests.Session] = None

    @classmethod
    def from_env(cls) -> "ModelClient":
        return cls(
            http_base=os.getenv("LLM_HTTP_BASE", "https://api.openai.com"),
            api_key=os.getenv("LLM_HTTP_API_KEY") or os.getenv("OPENAI_API_KEY"),
            model=os.getenv("LLM_HTTP_MODEL", "gpt-4o"),
            timeout=float(os.getenv("LLM_TIMEOUT_SECONDS", "60")),
        )

    def _get_session(self) -> requests.Session:
        if not self.api_key:
            raise ModelConfigurationError("LLM_HTTP_API_KEY environment variable is not set")
        if self._session is None:
            session = requests.Session()
            session.headers.update({
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            })
            self._session = session
        return self._session

    def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.3,
        max_new_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        session = self._get_session()
        url = f"{self.http_base.rstrip('/')}/v1/chat/completions"
        body: Dict[str, Any] = {
            "model": self.model,
            "temperature": float(temperature),
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if max_new_tokens:
            body["max_tokens"] = int(max_new_tokens)
        try:
            r = session.post(url, data=json.dumps(body), timeout=self.timeout)
        except requests.Timeout as exc:
            raise UpstreamTimeoutError(f"LLM request timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise UpstreamGenerationError(f"LLM request failed: {exc}") from exc
        if r.status_code != 200:
            raise UpstreamGenerationError(f"LLM endpoint returned HTTP {r.status_code}: {r.text[:500]}")
        try:
            data = r.json()
            txt = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise UpstreamGenerationError(f"Unexpected LLM response envelope: {exc}") from exc
        if not txt:
            raise UpstreamGenerationError("No content in response")
        parsed = _extract_json(txt)
        if parsed is None:
            raise UpstreamGenerationError("LLM content is not a JSON object")
        return parsed
