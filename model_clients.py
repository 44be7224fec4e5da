"""
Model-call collaborators.

Each provider turns (model, prompt) into completion text or raises a
ModelCallError subclass. ModelClient wraps a provider with retry and a
circuit breaker and returns a Result, so the generator never has to
catch provider exceptions itself.

Nothing here is a process-wide singleton: a ModelConfig is built from
settings (or by hand in tests) and handed to ModelClient.
"""
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

import requests
from google import genai
from google.genai import types as genai_types

from config import Settings
from error_handling import (
    CircuitBreaker,
    InvalidRequestError,
    ModelCallError,
    ModelConnectionError,
    ModelNotConfiguredError,
    ModelTimeoutError,
    Result,
    RetryConfig,
    retry_with_backoff,
)
from logger import performance_monitor

logger = logging.getLogger("quizgen.model_clients")

# Optional providers
try:
    from groq import Groq
    GROQ_AVAILABLE = True
except ImportError:
    GROQ_AVAILABLE = False

try:
    from llama_cpp import Llama
    LLAMA_CPP_AVAILABLE = True
except ImportError:
    LLAMA_CPP_AVAILABLE = False

GEMINI_MODELS = [
    "gemini-2.5-flash",
    "gemini-2.5-pro",
    "gemini-2.0-flash",
    "gemini-2.0-flash-lite",
]

PROVIDER_NAMES = ("ollama", "gemini", "groq", "llamacpp")


@dataclass
class ModelConfig:
    """Everything needed to build one provider."""
    provider: str
    credentials: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 180.0
    temperature: float = 0.2
    max_tokens: int = 2048
    model_path: Optional[str] = None
    n_ctx: int = 4096
    n_threads: int = 8
    retry: Optional[RetryConfig] = None
    circuit_breaker: Optional[CircuitBreaker] = field(default=None, repr=False)

    @classmethod
    def from_settings(cls, mode: str, settings: Settings) -> "ModelConfig":
        mode = (mode or "").strip().lower()
        if mode not in PROVIDER_NAMES:
            raise InvalidRequestError(
                f"Unknown mode '{mode}'. Expected one of: {', '.join(PROVIDER_NAMES)}"
            )

        credentials = {
            "gemini": settings.google_api_key,
            "groq": settings.groq_api_key,
        }.get(mode)

        retry = None
        if settings.enable_retry:
            retry = RetryConfig(
                max_retries=settings.max_retries,
                initial_delay=settings.retry_initial_delay,
                max_delay=settings.retry_max_delay,
            )

        breaker = None
        if settings.enable_circuit_breaker:
            breaker = CircuitBreaker(
                failure_threshold=settings.cb_failure_threshold,
                timeout=settings.cb_timeout,
            )

        return cls(
            provider=mode,
            credentials=credentials,
            base_url=settings.ollama_base_url if mode == "ollama" else None,
            timeout=settings.model_timeout_seconds,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            model_path=settings.llamacpp_model_path,
            n_ctx=settings.llamacpp_n_ctx,
            n_threads=settings.llamacpp_n_threads,
            retry=retry,
            circuit_breaker=breaker,
        )


class ModelProvider:
    """Interface every provider implements."""
    name = "base"

    def generate(self, model: str, prompt: str) -> str:
        raise NotImplementedError

    def list_models(self) -> List[str]:
        return []


class OllamaProvider(ModelProvider):
    """Local Ollama server over HTTP"""
    name = "ollama"

    def __init__(self, base_url: str, timeout: float, temperature: float, max_tokens: int):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    def generate(self, model: str, prompt: str) -> str:
        payload = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }
        data = self._request("post", "/api/generate", json=payload, timeout=self.timeout)
        text = data.get("response") or ""
        if not isinstance(text, str):
            raise ModelCallError(f"Ollama returned a non-text response: {type(text).__name__}")
        return text

    def list_models(self) -> List[str]:
        data = self._request("get", "/api/tags", timeout=30)
        return [m["name"] for m in data.get("models", []) if isinstance(m, dict) and "name" in m]

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = getattr(requests, method)(url, **kwargs)
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as e:
            raise ModelTimeoutError(f"Ollama request timed out after {kwargs.get('timeout')}s", cause=e)
        except requests.ConnectionError as e:
            raise ModelConnectionError(f"Cannot reach Ollama at {self.base_url}: {e}", cause=e)
        except requests.HTTPError as e:
            detail = e.response.text[:300] if e.response is not None else ""
            raise ModelCallError(f"Ollama API error: {e} {detail}".strip(), cause=e)
        except ValueError as e:
            raise ModelCallError(f"Ollama returned invalid JSON: {e}", cause=e)

        if not isinstance(data, dict):
            raise ModelCallError(f"Ollama returned an unexpected payload: {str(data)[:200]}")
        return data


class GeminiProvider(ModelProvider):
    """Google Gemini hosted API"""
    name = "gemini"

    def __init__(self, api_key: Optional[str], timeout: float, temperature: float, max_tokens: int):
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = None
        if api_key:
            self.client = genai.Client(
                api_key=api_key,
                http_options=genai_types.HttpOptions(timeout=int(timeout * 1000)),
            )

    def generate(self, model: str, prompt: str) -> str:
        if self.client is None:
            raise ModelNotConfiguredError("GOOGLE_API_KEY not configured")

        try:
            response = self.client.models.generate_content(
                model=model,
                contents=prompt,
                config=genai_types.GenerateContentConfig(
                    temperature=self.temperature,
                    max_output_tokens=self.max_tokens,
                ),
            )
        except Exception as e:
            if "timeout" in type(e).__name__.lower():
                raise ModelTimeoutError(f"Gemini request timed out: {e}", cause=e)
            raise ModelCallError(f"Gemini API error: {e}", cause=e)

        text = response.text
        if not text:
            raise ModelCallError("Empty response from Gemini")
        return text

    def list_models(self) -> List[str]:
        return list(GEMINI_MODELS)


class GroqProvider(ModelProvider):
    """Groq hosted inference"""
    name = "groq"

    def __init__(self, api_key: Optional[str], timeout: float, temperature: float, max_tokens: int):
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = None
        if api_key and GROQ_AVAILABLE:
            self.client = Groq(api_key=api_key, timeout=timeout)

    def generate(self, model: str, prompt: str) -> str:
        if self.client is None:
            raise ModelNotConfiguredError("Groq client unavailable (install groq and set GROQ_API_KEY)")
        try:
            completion = self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            if "timeout" in type(e).__name__.lower():
                raise ModelTimeoutError(f"Groq request timed out: {e}", cause=e)
            raise ModelCallError(f"Groq API error: {e}", cause=e)
        if not completion.choices:
            raise ModelCallError("Groq returned no choices")
        return completion.choices[0].message.content or ""

    def list_models(self) -> List[str]:
        if self.client is None:
            raise ModelNotConfiguredError("Groq client unavailable (install groq and set GROQ_API_KEY)")
        try:
            return [m.id for m in self.client.models.list().data]
        except Exception as e:
            raise ModelCallError(f"Failed to fetch Groq models: {e}", cause=e)


class LlamaCppProvider(ModelProvider):
    """In-process GGUF model through llama-cpp-python; the model argument is ignored."""
    name = "llamacpp"

    def __init__(self, model_path: Optional[str], n_ctx: int, n_threads: int,
                 temperature: float, max_tokens: int):
        self.model_path = model_path
        self.n_ctx = n_ctx
        self.n_threads = n_threads
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._llm = None
        self._lock = threading.Lock()

    def _load(self):
        if not LLAMA_CPP_AVAILABLE:
            raise ModelNotConfiguredError("llama-cpp-python is not installed")
        if not self.model_path or not os.path.exists(self.model_path):
            raise ModelNotConfiguredError(f"GGUF model not found: {self.model_path}")
        if self._llm is None:
            logger.info("Loading GGUF model %s", self.model_path)
            self._llm = Llama(
                model_path=self.model_path,
                n_ctx=self.n_ctx,
                n_gpu_layers=0,
                n_threads=self.n_threads,
                n_batch=512,
                verbose=False,
            )
        return self._llm

    def generate(self, model: str, prompt: str) -> str:
        # llama.cpp contexts are not safe to share between threads
        with self._lock:
            llm = self._load()
            try:
                output = llm(
                    prompt,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    echo=False,
                )
            except Exception as e:
                raise ModelCallError(f"llama.cpp generation failed: {e}", cause=e)
        try:
            return output["choices"][0]["text"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ModelCallError(f"llama.cpp returned an unexpected payload: {e}", cause=e)

    def list_models(self) -> List[str]:
        return [os.path.basename(self.model_path)] if self.model_path else []


def create_provider(config: ModelConfig) -> ModelProvider:
    if config.provider == "ollama":
        return OllamaProvider(config.base_url or "http://localhost:11434", config.timeout,
                              config.temperature, config.max_tokens)
    if config.provider == "gemini":
        return GeminiProvider(config.credentials, config.timeout, config.temperature, config.max_tokens)
    if config.provider == "groq":
        return GroqProvider(config.credentials, config.timeout, config.temperature, config.max_tokens)
    if config.provider == "llamacpp":
        return LlamaCppProvider(config.model_path, config.n_ctx, config.n_threads,
                                config.temperature, config.max_tokens)
    raise InvalidRequestError(f"Unknown provider '{config.provider}'")


class ModelClient:
    """Single-method model caller: call(model, prompt) -> Result[str]."""

    def __init__(self, config: ModelConfig, provider: Optional[ModelProvider] = None):
        self.config = config
        self.provider = provider or create_provider(config)

    @property
    def mode(self) -> str:
        return self.config.provider

    def call(self, model: str, prompt: str) -> Result[str]:
        start_time = time.time()
        try:
            text = self._guarded(self.provider.generate, model, prompt)
        except ModelCallError as e:
            logger.error("[%s] %s failed after %.2fs: %s", self.mode, model, time.time() - start_time, e)
            return Result.failure(e)
        except Exception as e:
            logger.exception("[%s] %s raised an unexpected %s", self.mode, model, type(e).__name__)
            return Result.failure(ModelCallError(f"Unexpected {self.mode} failure: {type(e).__name__}: {e}", cause=e))

        duration = time.time() - start_time
        performance_monitor.record_metric("model.call_seconds", duration, {"mode": self.mode, "model": model})
        logger.debug("[%s] %s returned %d chars in %.2fs", self.mode, model, len(text), duration)
        return Result.success(text, raw_output=text)

    def list_models(self) -> List[str]:
        return self._guarded(self.provider.list_models)

    def _guarded(self, func, *args):
        def attempt():
            if self.config.retry is not None:
                return retry_with_backoff(func, self.config.retry, *args)
            return func(*args)

        if self.config.circuit_breaker is not None:
            return self.config.circuit_breaker.call(attempt)
        return attempt()


def build_model_client(mode: str, settings: Settings) -> ModelClient:
    """Construct a client for a provider mode from application settings."""
    return ModelClient(ModelConfig.from_settings(mode, settings))
