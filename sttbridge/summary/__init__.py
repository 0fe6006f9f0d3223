"""
Transcript summarization collaborator.

Design intent:
- Accept the transcript string the bridge produced and return a summary.
- Keep the model backend swappable via an injected callable.
"""
from .llama_adapter import SummaryAdapterError, summarize_with_llama_cpp
from .prompts import SUMMARY_SYSTEM_PROMPT, build_summary_prompt

__all__ = [
    "SUMMARY_SYSTEM_PROMPT",
    "SummaryAdapterError",
    "build_summary_prompt",
    "summarize_with_llama_cpp",
]
