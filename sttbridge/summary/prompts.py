from __future__ import annotations

SUMMARY_SYSTEM_PROMPT = """You are an expert meeting assistant. Your goal is to provide a concise and accurate summary of the following meeting transcript.
Focus on:
1. Key decisions made.
2. Action items and owners.
3. Important discussion points.

Format the output clearly."""


def build_summary_prompt(transcript: str) -> str:
    return f"{SUMMARY_SYSTEM_PROMPT}\n\nTranscript:\n{transcript.strip()}"
