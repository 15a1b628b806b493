"""Translation of key→text content maps.

The translation endpoint returns near-JSON text that is often cosmetically
broken (wrapping prose, smart quotes, trailing commas, stray braces).
:func:`parse_strict` coerces it into a dict with a fixed, ordered list of
repair steps; :func:`validate_translation` then checks the structure with
jsonschema before the result is trusted.

Inline markup is swapped for opaque ``__TAG__<base64>__TAG__`` tokens
before translation so the service cannot alter it.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from collections.abc import Callable, Iterable
from typing import Any, Protocol

import jsonschema

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES: tuple[str, ...] = ("en", "ja", "de", "fr", "ko", "zh")
BASE_LANGUAGE = "en"

TRANSLATION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "minProperties": 1,
    "additionalProperties": {"type": "string"},
}


class TranslationFormatError(RuntimeError):
    pass


# ---------------------------------------------------------------------------
# Repair steps (each pure: str -> str)
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_SINGLE_QUOTED_RE = re.compile(r"([{,:\[]\s*)'((?:[^'\\]|\\.)*)'(?=\s*[:,}\]])")

_SMART_DOUBLE = str.maketrans({"“": '"', "”": '"', "„": '"', "‟": '"', "«": '"', "»": '"'})
_SMART_SINGLE = str.maketrans({"‘": "'", "’": "'", "‚": "'", "‛": "'"})


def trim_to_outer_braces(text: str) -> str:
    s = _FENCE_RE.sub("", text or "").strip()
    start = s.find("{")
    end = s.rfind("}")
    if start == -1 or end <= start:
        raise TranslationFormatError("no JSON object braces found in translation output")
    return s[start : end + 1]


def flatten_unbalanced_braces(text: str) -> str:
    opens = text.count("{")
    closes = text.count("}")
    if opens == closes:
        return text
    logger.debug("Unbalanced braces in translation output: open=%d close=%d", opens, closes)
    inner = text[1:-1] if text.startswith("{") and text.endswith("}") else text
    return "{" + inner.replace("{", "").replace("}", "") + "}"


def normalize_quotes(text: str) -> str:
    s = text.translate(_SMART_DOUBLE).translate(_SMART_SINGLE)

    def _requote(m: re.Match[str]) -> str:
        body = m.group(2).replace("\\'", "'").replace('"', '\\"')
        return f'{m.group(1)}"{body}"'

    # Re-run until stable: adjacent matches share a delimiter character.
    prev = None
    while prev != s:
        prev = s
        s = _SINGLE_QUOTED_RE.sub(_requote, s)
    return s


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


# Applied in order after the first parse attempt fails.
REPAIR_STEPS: tuple[Callable[[str], str], ...] = (
    flatten_unbalanced_braces,
    normalize_quotes,
    strip_trailing_commas,
)


def _apply(steps: Iterable[Callable[[str], str]], text: str) -> str:
    for step in steps:
        text = step(text)
    return text


def _loads_object(text: str) -> dict[str, Any]:
    # The whole span must be one object; an early "}" must not truncate it.
    obj = json.loads(text)
    if not isinstance(obj, dict):
        raise ValueError("top-level JSON value is not an object")
    return obj


def parse_strict(raw_text: str) -> dict[str, Any]:
    """Parse translation output into a dict, repairing common defects.

    The text is trimmed to its outermost ``{...}`` span. If that span is
    already one complete JSON object it is returned as-is, so braces inside
    valid string values survive. Otherwise :data:`REPAIR_STEPS` run in order
    (brace flattening first) and parsing is retried exactly once before
    raising :class:`TranslationFormatError`.
    """
    if not isinstance(raw_text, str) or not raw_text.strip():
        raise TranslationFormatError("empty translation output")

    text = trim_to_outer_braces(raw_text)
    try:
        return _loads_object(text)
    except ValueError as first_err:
        logger.debug("Translation output did not parse, applying repairs: %s", first_err)

    repaired = _apply(REPAIR_STEPS, text)
    try:
        return _loads_object(repaired)
    except ValueError as e:
        raise TranslationFormatError(f"translation output is not valid JSON after repair: {e}") from e


def validate_translation(obj: Any, source: dict[str, Any] | None = None) -> dict[str, str]:
    try:
        jsonschema.validate(instance=obj, schema=TRANSLATION_SCHEMA)
    except jsonschema.ValidationError as e:
        raise TranslationFormatError(f"translation schema violation: {e.message}") from e
    if source is not None:
        missing = sorted(set(source) - set(obj))
        extra = sorted(set(obj) - set(source))
        if missing or extra:
            raise TranslationFormatError(f"translation keys differ from source: missing={missing} extra={extra}")
    return obj


# ---------------------------------------------------------------------------
# Markup encoding
# ---------------------------------------------------------------------------

_MARKUP_RE = re.compile(
    r"<([A-Za-z][\w-]*)\b[^<>]*>.*?</\1\s*>"  # paired: <strong>..</strong>
    r"|<[A-Za-z][\w-]*\b[^<>]*/>"  # self-closing: <br/>
    r"|<(?:br|hr|wbr|img)\b[^<>]*>"  # void without slash: <br>
    r"|__TAG__",  # literal delimiter in plain text
    re.DOTALL | re.IGNORECASE,
)
_TOKEN_RE = re.compile(r"__TAG__([A-Za-z0-9+/]+={0,2})__TAG__")


def encode_markup(text: str) -> str:
    def _enc(m: re.Match[str]) -> str:
        return "__TAG__" + base64.b64encode(m.group(0).encode("utf-8")).decode("ascii") + "__TAG__"

    return _MARKUP_RE.sub(_enc, text)


def decode_markup(text: str) -> str:
    def _dec(m: re.Match[str]) -> str:
        try:
            return base64.b64decode(m.group(1), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return m.group(0)

    return _TOKEN_RE.sub(_dec, text)


def markup_tokens(text: str) -> list[str]:
    return sorted(_TOKEN_RE.findall(text))


# ---------------------------------------------------------------------------
# Translator
# ---------------------------------------------------------------------------

class TranslationClient(Protocol):
    def translate_text(self, text: str, target_language: str) -> str: ...


class Translator:
    def __init__(
        self,
        client: TranslationClient,
        *,
        supported_languages: Iterable[str] = SUPPORTED_LANGUAGES,
        base_language: str = BASE_LANGUAGE,
    ) -> None:
        self._client = client
        self.supported_languages = tuple(supported_languages)
        self.base_language = base_language

    def translate_content(self, content: dict[str, str], target_language: str) -> dict[str, str]:
        if target_language not in self.supported_languages:
            raise ValueError(f"unsupported language: {target_language}")
        if target_language == self.base_language:
            return dict(content)

        encoded = {k: encode_markup(v) for k, v in content.items()}
        raw = self._client.translate_text(json.dumps(encoded, ensure_ascii=False), target_language)
        parsed = validate_translation(parse_strict(raw), source=encoded)

        out: dict[str, str] = {}
        for key, value in parsed.items():
            if markup_tokens(value) != markup_tokens(encoded[key]):
                raise TranslationFormatError(f"markup tokens altered in {target_language} translation of {key!r}")
            out[key] = decode_markup(value)
        return out
