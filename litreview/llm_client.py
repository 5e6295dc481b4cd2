import asyncio, json, logging, re, time
import httpx
from typing import Any, Optional

from litreview.errors import TransientError
from litreview.settings.config import settings

logger = logging.getLogger(__name__)


class OllamaError(TransientError):
    code = "LLM_UNAVAILABLE"


def llm_configured() -> bool:
    return bool((settings.OLLAMA_BASE_URL or "").strip())


class RateLimiter:
    """Spaces out calls so at most one request starts every `min_interval_ms`."""

    def __init__(self, min_interval_ms: int):
        self._interval = max(0, min_interval_ms) / 1000.0
        self._lock = asyncio.Lock()
        self._last = 0.0

    async def wait(self) -> None:
        async with self._lock:
            now = time.monotonic()
            delay = self._last + self._interval - now
            if delay > 0:
                await asyncio.sleep(delay)
            self._last = time.monotonic()


#----------response cleanup---------------

def _sanitize_llm_text(out: str) -> str:
    """Remove assistant-y prefaces and unwrap code fences."""
    if not out:
        return ""
    s = out.strip()
    # Prefer content inside triple backticks if present
    m = re.search(r"```(?:\w+)?\s*([\s\S]*?)```", s)
    if m and m.group(1).strip():
        s = m.group(1).strip()
    # Drop preface lines like "Here you go:" / "Here is the JSON:"
    lines = [ln.rstrip() for ln in s.splitlines()]
    while lines:
        head = lines[0].strip()
        if not head:
            lines.pop(0)
            continue
        low = head.lower().rstrip(":")
        boiler = "here you go" in low or "here is" in low or "here's" in low
        if boiler and len(head) <= 120 and not head.startswith("{"):
            lines.pop(0)
            continue
        break
    return "\n".join(lines).strip()


def parse_json_object(raw: str) -> Optional[dict]:
    """Strict JSON first, then the first {...} block anywhere in the output."""
    s = _sanitize_llm_text(raw)
    if not s:
        return None
    try:
        data = json.loads(s)
    except ValueError:
        m = re.search(r"\{.*\}", s, re.S)
        if not m:
            return None
        try:
            data = json.loads(m.group(0))
        except ValueError:
            return None
    return data if isinstance(data, dict) else None


#----------transport---------------

async def ask_llm(
    prompt: str,
    *,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    response_format: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Minimal wrapper around Ollama /api/generate (non-streaming).
    Raises OllamaError on transport errors or an empty response.
    """
    base = (settings.OLLAMA_BASE_URL or "").rstrip("/")
    if not base:
        raise OllamaError("OLLAMA_BASE_URL is not configured")
    payload: dict[str, Any] = {
        "model": model or settings.OLLAMA_MODEL,
        "prompt": prompt,
        "stream": False,
        "options": {"temperature": settings.LLM_TEMPERATURE if temperature is None else temperature},
    }
    if response_format == "json":
        payload["format"] = "json"

    url = f"{base}/api/generate"
    try:
        if client is not None:
            r = await client.post(url, json=payload)
            r.raise_for_status()
            data = r.json()
        else:
            async with httpx.AsyncClient(timeout=settings.LLM_TIMEOUT_SECONDS) as c:
                r = await c.post(url, json=payload)
                r.raise_for_status()
                data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        raise OllamaError(f"Ollama request failed: {e}") from e

    out = ((data or {}).get("response") or "").strip()
    if not out:
        raise OllamaError("Empty response from Ollama.")
    return out


async def ask_llm_json(
    system: str,
    user: str,
    *,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[dict]:
    """Returns the parsed JSON object, or None when the model answered with something else."""
    prompt = (
        f"{system}\n\n"
        f"USER:\n{user}\n\n"
        "Return ONLY the response in strict JSON."
    )
    raw = await ask_llm(prompt, model=model, temperature=temperature, response_format="json", client=client)
    data = parse_json_object(raw)
    if data is None:
        logger.warning("LLM returned non-JSON: %s", raw[:200])
    return data
