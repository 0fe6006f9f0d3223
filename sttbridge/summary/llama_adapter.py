from __future__ import annotations

"""
Local llama.cpp summarizer used by the summary endpoint.

Design intent:
- Single stateless request/response; no retry, callers decide what to do.
- Fail closed with SummaryAdapterError so the API can map it to a 500.
"""

import logging
import os
import time
from threading import Lock
from typing import Any

from .prompts import build_summary_prompt

logger = logging.getLogger(__name__)

_MODEL_CACHE: dict[str, Any] = {}
_MODEL_CACHE_LOCK = Lock()


class SummaryAdapterError(RuntimeError):
    """Raised when summary generation fails or returns an empty payload."""


def _load_llama(model_path: str, n_ctx: int) -> Any:
    with _MODEL_CACHE_LOCK:
        cached = _MODEL_CACHE.get(model_path)
        if cached is not None:
            return cached
        try:
            from llama_cpp import Llama  # type: ignore
        except Exception as exc:
            raise SummaryAdapterError(f"llama_cpp import failed: {exc}") from exc
        try:
            llm = Llama(model_path=model_path, n_ctx=int(n_ctx), verbose=False)
        except Exception as exc:
            raise SummaryAdapterError(f"llama_cpp model load failed: {exc}") from exc
        _MODEL_CACHE[model_path] = llm
        return llm


def summarize_with_llama_cpp(
    transcript: str,
    *,
    model_path: str,
    max_tokens: int = 512,
    n_ctx: int = 4096,
) -> str:
    resolved_model_path = (model_path or "").strip()
    if not resolved_model_path:
        raise SummaryAdapterError(
            "Summary model path is missing. Set SUMMARY_LLAMA_CPP_MODEL to a local GGUF file."
        )
    if not os.path.exists(resolved_model_path):
        raise SummaryAdapterError(f"Summary model file not found: {resolved_model_path}")

    llm = _load_llama(resolved_model_path, n_ctx)
    started = time.perf_counter()
    try:
        resp = llm.create_chat_completion(
            messages=[{"role": "user", "content": build_summary_prompt(transcript)}],
            temperature=0.2,
            max_tokens=int(max_tokens),
        )
        summary = str(resp["choices"][0]["message"]["content"] or "").strip()
    except Exception as exc:
        raise SummaryAdapterError(f"Summary inference failed: {exc}") from exc

    if not summary:
        raise SummaryAdapterError("Summary model returned empty content.")
    logger.info(
        "summary_generated elapsed_ms=%s transcript_chars=%s",
        round((time.perf_counter() - started) * 1000.0, 2),
        len(transcript),
    )
    return summary
