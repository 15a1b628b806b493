"""Prompt text sent to the generation endpoint.

The wording is operator-tunable copy; only the keys and output contracts
matter to the executors.
"""

from __future__ import annotations

import json


MARKETING_SYSTEM_PROMPT = (
    "Role: marketing copywriter for an automotive parts manufacturer website. "
    "Write short, confident, professional copy. "
    "Keep company names and technical terms (SMT, PBA, CNC) unchanged. "
    "Allowed inline HTML tags: <strong>, <br>, <span>. "
    "Return ONLY a JSON object; keys are given by the user and must not change."
)

TRANSLATION_SYSTEM_PROMPT = (
    "Role: technical translator for automotive industry website content.\n"
    "Rules:\n"
    "1. Output MUST be a valid JSON object: starts with { and ends with }, "
    "all keys and values in double quotes, no trailing commas.\n"
    "2. Never translate keys; translate values only.\n"
    "3. Tokens of the form __TAG__...__TAG__ are opaque: copy them unchanged.\n"
    "4. Do not translate the company name or technical terms (SMT, PBA, CNC).\n"
    "5. Use natural, idiomatic phrasing for the target language."
)

LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "ja": "Japanese",
    "de": "German",
    "fr": "French",
    "ko": "Korean",
    "zh": "Chinese (Simplified)",
}

BANNER_PROMPTS: dict[str, str] = {
    "main": "A modern, professional image showcasing automotive manufacturing technology with a focus on electronics and precision engineering. Style: clean, corporate, high-tech.",
    "news": "A dynamic composition representing automotive industry news and innovations. Style: modern, journalistic, informative.",
    "history": "A timeline-style visualization of automotive manufacturing evolution. Style: historical, progressive, corporate.",
    "technology": "Cutting-edge automotive manufacturing technology and robotics. Style: technical, futuristic, precise.",
    "vision": "Future of automotive manufacturing with AI and automation. Style: visionary, innovative, bold.",
    "company": "Modern automotive manufacturing facility interior. Style: professional, industrial, clean.",
    "electronics": "Advanced automotive electronics manufacturing. Style: technical, detailed, modern.",
    "cnc": "Precision CNC machining of automotive parts. Style: industrial, technical, detailed.",
}

_DEFAULT_BANNER_PROMPT = "Professional automotive manufacturing image"

# Keys regenerated for every content version.
CONTENT_KEYS: tuple[str, ...] = (
    "random-vision-text",
    "vision-card-random-text-1",
    "vision-card-random-text-2",
    "vision-card-random-text-3",
    "vision-card-random-text-4",
    "technology-hero-random-description",
    "company-overview-random-text",
)


def banner_prompt(page_type: str, variant: int) -> str:
    base = BANNER_PROMPTS.get(page_type, _DEFAULT_BANNER_PROMPT)
    return f"{base} Composition variant {int(variant)}. No text, no logos."


def content_prompt(version: int, keys: tuple[str, ...] = CONTENT_KEYS) -> str:
    skeleton = json.dumps({k: "..." for k in keys}, ensure_ascii=False, indent=2)
    return (
        f"Write fresh English website copy for content version {int(version)}. "
        "One or two short sentences per key; <br> may split long lines.\n"
        f"Fill in this JSON object and return only the object:\n{skeleton}"
    )


def translation_request(payload: str, target_language: str) -> str:
    name = LANGUAGE_NAMES.get(target_language, target_language)
    return f"Translate the values of this JSON object into {name} ({target_language}):\n{payload}"
