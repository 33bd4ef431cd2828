"""
Call an LLM with a prompt: provider adapters plus the invocation wrapper.

Backend is selected by RunConfig.llm_provider: gemini (default), openai, gemini_aiplatform, or cursor.
- gemini: google-genai client; accepts a response schema and returns typed JSON.
- openai: openai SDK chat completions; schema via a json_schema response_format.
- gemini_aiplatform: REST to aiplatform.googleapis.com (API key in URL); text only.
- cursor: Cursor CLI via subprocess; text only.

Adapters return a tagged result, PlainText or StructuredObject. LLMCaller wraps
an adapter with the exact-match response cache and retry/backoff. Only
ProviderError (network, auth, quota, empty reply) is retried; a structured
reply that cannot be parsed or has the wrong shape raises ContractViolationError
immediately.
"""

import json
import logging
import os
import re
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests
import yaml

from config import RunConfig
from errors import ConfigError, ContractViolationError, ProviderError
from utils.backoff import BackoffPolicy, run_with_retry
from utils.llm_cache import ResponseCache

logger = logging.getLogger("code2tutorial.llm")

# HTTP statuses treated as transient: auth, timeout, quota, server side.
TRANSIENT_STATUS = {401, 403, 408, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class StructuredObject:
    value: Any


# --- structured text extraction ---

_JSON_FENCE = re.compile(r"```json\s*\n?(.*?)\n?\s*```", re.DOTALL | re.IGNORECASE)
_ANY_FENCE = re.compile(r"```[^\n`]*\n(.*?)\n?\s*```", re.DOTALL)
_INLINE_FENCE = re.compile(r"```\s*(.*?)\s*```", re.DOTALL)


def extract_code_block(text: str) -> str:
    """Return the ```json block if present, else the first fenced block (inline too), else the raw text."""
    text = (text or "").strip()
    for pattern in (_JSON_FENCE, _ANY_FENCE, _INLINE_FENCE):
        m = pattern.search(text)
        if m:
            return m.group(1).strip()
    return text


def parse_structured_text(text: str) -> Any:
    """
    Parse a free-text model reply into a Python value.

    JSON is tried first; YAML (a superset the prompts ask for) is the fallback.
    """
    block = extract_code_block(text)
    try:
        return json.loads(block)
    except ValueError:
        pass
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as e:
        raise ContractViolationError(
            f"Structured response could not be parsed: {e}", details={"raw": text[:500]}
        ) from e
    if not isinstance(data, (list, dict)):
        raise ContractViolationError(
            f"Structured response is not a list or mapping (got {type(data).__name__})",
            details={"raw": text[:500]},
        )
    return data


def check_schema_shape(value: Any, schema: Optional[dict]) -> None:
    """Check the top-level type and required keys of a structured value."""
    if not schema:
        return
    expected = str(schema.get("type", "")).lower()
    if expected == "array" and not isinstance(value, list):
        raise ContractViolationError(f"Expected a list from the model, got {type(value).__name__}")
    if expected == "object":
        if not isinstance(value, dict):
            raise ContractViolationError(f"Expected a mapping from the model, got {type(value).__name__}")
        missing = [k for k in schema.get("required", []) if k not in value]
        if missing:
            raise ContractViolationError(
                f"Model output is missing required keys {missing}. Got: {json.dumps(value)[:300]}"
            )


# --- retry hints ---


def _parse_retry_delay_seconds(error_message: str) -> Optional[int]:
    """Parse a provider's retry hint ('retryDelay': '57s' or 'Please retry in 36.7s')."""
    match = re.search(r"retryDelay['\"]?\s*:\s*['\"]?(\d+)s", error_message, re.IGNORECASE)
    if match:
        return max(1, int(match.group(1)))
    match = re.search(r"retry in (\d+(?:\.\d+)?)\s*s", error_message, re.IGNORECASE)
    if match:
        return max(1, int(float(match.group(1))) + 1)
    return None


# --- adapters ---


class ProviderAdapter:
    """invoke(prompt) -> PlainText; schema-capable adapters also implement invoke_structured."""

    name = "base"
    supports_schema = False

    def invoke(self, prompt: str) -> PlainText:
        raise NotImplementedError

    def invoke_structured(self, prompt: str, schema: dict) -> StructuredObject:
        raise NotImplementedError


def _to_json_schema(schema: Any) -> Any:
    """Lowercase the Gemini-style type names ("ARRAY" -> "array") throughout a schema."""
    if isinstance(schema, dict):
        out = {}
        for key, value in schema.items():
            if key == "type" and isinstance(value, str):
                out[key] = value.lower()
            else:
                out[key] = _to_json_schema(value)
        return out
    if isinstance(schema, list):
        return [_to_json_schema(v) for v in schema]
    return schema


class OpenAIAdapter(ProviderAdapter):
    """OpenAI chat completions; structured calls use a json_schema response_format."""

    name = "openai"
    supports_schema = True

    def __init__(self, api_key: str, model: str, max_tokens: int) -> None:
        if not api_key:
            raise ConfigError("No API key configured for the openai provider (set OPENAI_API_KEY)")
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens

    def _complete(self, prompt: str, **extra: Any) -> str:
        import openai

        client = openai.OpenAI(api_key=self.api_key)
        try:
            completion = client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0,
                max_tokens=self.max_tokens,
                **extra,
            )
        except openai.RateLimitError as e:
            raise ProviderError(
                f"OpenAI rate limited: {str(e)[:300]}",
                retry_after=_parse_retry_delay_seconds(str(e)),
            ) from e
        except (openai.AuthenticationError, openai.InternalServerError) as e:
            raise ProviderError(f"OpenAI {e.status_code}: {str(e)[:300]}") from e
        except openai.APIConnectionError as e:
            # APITimeoutError is a subclass.
            raise ProviderError(f"OpenAI network error: {e}") from e
        choices = getattr(completion, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise ProviderError("Empty response from LLM")
        return content

    def invoke(self, prompt: str) -> PlainText:
        return PlainText(self._complete(prompt))

    def invoke_structured(self, prompt: str, schema: dict) -> StructuredObject:
        json_schema = _to_json_schema(schema)
        # response_format requires an object at the root.
        wrapped = json_schema.get("type") != "object"
        if wrapped:
            json_schema = {"type": "object", "properties": {"items": json_schema}, "required": ["items"]}
        text = self._complete(
            prompt,
            response_format={"type": "json_schema", "json_schema": {"name": "response", "schema": json_schema}},
        )
        try:
            value = json.loads(text)
        except ValueError as e:
            raise ContractViolationError(f"OpenAI returned invalid JSON: {e}") from e
        if wrapped:
            if not isinstance(value, dict) or "items" not in value:
                raise ContractViolationError(f"OpenAI reply is missing the items wrapper: {text[:300]}")
            value = value["items"]
        return StructuredObject(value)


class GeminiAdapter(ProviderAdapter):
    name = "gemini"
    supports_schema = True

    def __init__(self, api_key: str, model: str, max_tokens: int) -> None:
        if not api_key:
            raise ConfigError("No API key configured for the gemini provider (set GEMINI_API_KEY)")
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens

    def _generate(self, prompt: str, **extra: Any):
        import httpx
        from google import genai
        from google.genai import errors as genai_errors
        from google.genai import types

        client = genai.Client(api_key=self.api_key)
        gen_config = types.GenerateContentConfig(
            temperature=0,
            max_output_tokens=self.max_tokens,
            **extra,
        )
        try:
            return client.models.generate_content(model=self.model, contents=[prompt], config=gen_config)
        except genai_errors.APIError as e:
            if e.code in TRANSIENT_STATUS:
                raise ProviderError(
                    f"Gemini {e.code}: {str(e)[:300]}",
                    retry_after=_parse_retry_delay_seconds(str(e)),
                ) from e
            raise
        except httpx.TransportError as e:
            raise ProviderError(f"Gemini network error: {e}") from e

    def invoke(self, prompt: str) -> PlainText:
        response = self._generate(prompt)
        if not response or not response.text:
            raise ProviderError("Empty response from LLM")
        return PlainText(response.text)

    def invoke_structured(self, prompt: str, schema: dict) -> StructuredObject:
        response = self._generate(
            prompt,
            response_mime_type="application/json",
            response_schema=schema,
        )
        if response is None:
            raise ProviderError("Empty response from LLM")
        parsed = getattr(response, "parsed", None)
        if parsed is not None:
            return StructuredObject(parsed)
        if not response.text:
            raise ProviderError("Empty response from LLM")
        try:
            return StructuredObject(json.loads(response.text))
        except ValueError as e:
            raise ContractViolationError(f"Gemini returned invalid JSON: {e}") from e


def _parse_aiplatform_body(body: str) -> list:
    """streamGenerateContent returns one object, an array, or concatenated objects."""
    body = (body or "").strip()
    if not body:
        return []
    try:
        parsed = json.loads(body)
    except ValueError:
        pass
    else:
        return parsed if isinstance(parsed, list) else [parsed]
    decoder = json.JSONDecoder()
    items = []
    pos = 0
    while pos < len(body):
        try:
            obj, end = decoder.raw_decode(body, pos)
        except ValueError:
            break
        items.append(obj)
        pos = end
        while pos < len(body) and body[pos] in " \r\n\t,":
            pos += 1
    return items


def _extract_aiplatform_text(items: list) -> str:
    chunks: list[str] = []
    for data in items:
        if not isinstance(data, dict):
            continue
        for candidate in data.get("candidates") or []:
            content = candidate.get("content") if isinstance(candidate, dict) else None
            if not isinstance(content, dict):
                continue
            for part in content.get("parts") or []:
                text = part.get("text") if isinstance(part, dict) else part
                if isinstance(text, str) and text:
                    chunks.append(text)
    return "".join(chunks).strip()


class GeminiAIPlatformAdapter(ProviderAdapter):
    """
    Gemini via AI Platform REST (express mode):
    POST {base}/v1/publishers/google/models/{model}:streamGenerateContent?key={key}
    """

    name = "gemini_aiplatform"
    base_url = "https://aiplatform.googleapis.com"

    def __init__(self, api_key: str, model: str, max_tokens: int, timeout: int = 120) -> None:
        if not api_key:
            raise ConfigError("No API key configured for the gemini_aiplatform provider (set GEMINI_API_KEY)")
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    def invoke(self, prompt: str) -> PlainText:
        url = f"{self.base_url}/v1/publishers/google/models/{self.model}:streamGenerateContent?key={self.api_key}"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt.replace("\x00", "")}]}],
            "generationConfig": {"temperature": 0, "maxOutputTokens": self.max_tokens},
        }
        try:
            r = requests.post(url, json=payload, headers={"Content-Type": "application/json"}, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ProviderError(f"Gemini AI Platform network error: {e}") from e
        if r.status_code in TRANSIENT_STATUS:
            raise ProviderError(
                f"Gemini AI Platform {r.status_code}: {r.text[:300]}",
                retry_after=_parse_retry_delay_seconds(r.text),
            )
        if r.status_code != 200:
            logger.error("Gemini AI Platform %s: %s (model=%s)", r.status_code, r.text[:500], self.model)
            r.raise_for_status()
        text = _extract_aiplatform_text(_parse_aiplatform_body(r.text))
        if not text:
            raise ProviderError("Empty response from LLM (no text in stream)")
        return PlainText(text)


class CursorAdapter(ProviderAdapter):
    """Cursor CLI agent via subprocess; prompt on stdin, --output-format text."""

    name = "cursor"

    def __init__(self, api_key: str, model: str, timeout: int = 300) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def invoke(self, prompt: str) -> PlainText:
        cmd = ["cursor", "agent", "--output-format", "text"]
        if self.model:
            cmd.extend(["--model", self.model])
        env = None
        if self.api_key:
            env = dict(os.environ, CURSOR_API_KEY=self.api_key)
        try:
            result = subprocess.run(
                cmd,
                input=prompt,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except FileNotFoundError as e:
            raise ConfigError("Cursor CLI not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise ProviderError(f"Cursor agent timed out after {self.timeout}s") from e
        if result.returncode != 0:
            raise ProviderError(
                f"Cursor agent exited with code {result.returncode}: {result.stderr or result.stdout or 'no output'}"
            )
        out = (result.stdout or "").strip()
        if not out:
            raise ProviderError("Empty response from Cursor LLM")
        return PlainText(out)


def get_provider(config: RunConfig) -> ProviderAdapter:
    if config.llm_provider == "openai":
        return OpenAIAdapter(config.credential, config.model_name, config.max_tokens)
    if config.llm_provider == "gemini":
        return GeminiAdapter(config.credential, config.model_name, config.max_tokens)
    if config.llm_provider == "gemini_aiplatform":
        return GeminiAIPlatformAdapter(config.credential, config.model_name, config.max_tokens)
    if config.llm_provider == "cursor":
        return CursorAdapter(config.credential, config.model_name)
    raise ConfigError(f"Unsupported provider: {config.llm_provider}")


# --- invocation wrapper ---


class LLMCaller:
    """
    call(prompt, structured, schema) with cache lookup, retry/backoff and cache write-back.

    Args:
        adapter: The provider adapter.
        cache: ResponseCache, or None to disable caching.
        policy: BackoffPolicy for ProviderError retries.
        sleep: Injectable sleep (tests pass a recorder).
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        cache: Optional[ResponseCache] = None,
        policy: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.adapter = adapter
        self.cache = cache
        self.policy = policy or BackoffPolicy()
        self.sleep = sleep

    @classmethod
    def from_config(cls, config: RunConfig) -> "LLMCaller":
        cache = ResponseCache(config.cache_path) if config.use_cache else None
        return cls(get_provider(config), cache=cache, policy=BackoffPolicy.from_settings(config.retry))

    def call(
        self,
        prompt: str,
        structured: bool = False,
        schema: Optional[dict] = None,
        use_cache: bool = True,
    ) -> Any:
        caching = self.cache is not None and use_cache
        if caching:
            hit, value = self.cache.lookup(prompt)
            if hit and (structured or isinstance(value, str)):
                logger.debug("Cache hit (prompt length %d)", len(prompt))
                if not structured:
                    return value
                try:
                    check_schema_shape(value, schema)
                    return value
                except ContractViolationError as e:
                    logger.warning("Cached reply has the wrong shape, calling the provider again: %s", e)
                    self.cache.delete(prompt)

        logger.debug("Calling %s (prompt length %d, structured=%s)", self.adapter.name, len(prompt), structured)
        logger.debug("Prompt:\n%s", prompt)
        result = run_with_retry(
            lambda: self._invoke(prompt, structured, schema),
            self.policy,
            sleep=self.sleep,
            label=f"{self.adapter.name} call",
        )
        if isinstance(result, StructuredObject):
            check_schema_shape(result.value, schema)
            value = result.value
        else:
            value = result.text

        if caching:
            self.cache.save(prompt, value)
        return value

    def _invoke(self, prompt: str, structured: bool, schema: Optional[dict]):
        if not structured:
            return self.adapter.invoke(prompt)
        if self.adapter.supports_schema and schema:
            return self.adapter.invoke_structured(prompt, schema)
        reply = self.adapter.invoke(prompt)
        return StructuredObject(parse_structured_text(reply.text))


def call_llm(prompt: str, config: RunConfig, use_cache: bool = True) -> str:
    """Plain-text call for the configured provider."""
    return LLMCaller.from_config(config).call(prompt, use_cache=use_cache)


def call_llm_structured(prompt: str, schema: dict, config: RunConfig, use_cache: bool = True) -> Any:
    """Structured call: schema-constrained where the provider supports it, parsed text otherwise."""
    return LLMCaller.from_config(config).call(prompt, structured=True, schema=schema, use_cache=use_cache)


def forget_cached_response(prompt: str, config: RunConfig) -> None:
    """Evict a reply a stage rejected, so the next run asks the provider again."""
    if config.use_cache:
        ResponseCache(config.cache_path).delete(prompt)
