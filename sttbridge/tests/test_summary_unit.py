import pytest

from sttbridge.summary import SummaryAdapterError, summarize_with_llama_cpp
from sttbridge.summary.prompts import SUMMARY_SYSTEM_PROMPT, build_summary_prompt


def test_build_summary_prompt_appends_transcript() -> None:
    prompt = build_summary_prompt("  alice will send the deck  ")
    assert prompt.startswith(SUMMARY_SYSTEM_PROMPT)
    assert prompt.endswith("Transcript:\nalice will send the deck")


def test_summarize_requires_model_path() -> None:
    with pytest.raises(SummaryAdapterError, match="SUMMARY_LLAMA_CPP_MODEL"):
        summarize_with_llama_cpp("hello", model_path="  ")


def test_summarize_missing_model_file(tmp_path) -> None:
    with pytest.raises(SummaryAdapterError, match="not found"):
        summarize_with_llama_cpp("hello", model_path=str(tmp_path / "missing.gguf"))


def test_summarize_uses_cached_model(monkeypatch, tmp_path) -> None:
    model_file = tmp_path / "tiny.gguf"
    model_file.write_bytes(b"gguf")
    calls = []

    class FakeLlama:
        def create_chat_completion(self, **kwargs):
            calls.append(kwargs)
            return {"choices": [{"message": {"content": "  Action items: none.  "}}]}

    monkeypatch.setattr(
        "sttbridge.summary.llama_adapter._load_llama", lambda model_path, n_ctx: FakeLlama()
    )
    summary = summarize_with_llama_cpp("we agreed", model_path=str(model_file), max_tokens=64)

    assert summary == "Action items: none."
    assert calls[0]["max_tokens"] == 64
    assert calls[0]["messages"][0]["content"].endswith("Transcript:\nwe agreed")


def test_summarize_empty_completion_is_error(monkeypatch, tmp_path) -> None:
    model_file = tmp_path / "tiny.gguf"
    model_file.write_bytes(b"gguf")

    class EmptyLlama:
        def create_chat_completion(self, **kwargs):
            _ = kwargs
            return {"choices": [{"message": {"content": ""}}]}

    monkeypatch.setattr(
        "sttbridge.summary.llama_adapter._load_llama", lambda model_path, n_ctx: EmptyLlama()
    )
    with pytest.raises(SummaryAdapterError, match="empty"):
        summarize_with_llama_cpp("we agreed", model_path=str(model_file))
