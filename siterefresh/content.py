"""Content-version regeneration and multi-language translation tasks.

Layout: ``<content_dir>/v<N>/<lang>.json``, one flat key→text map per
language. The base-language file of each version is produced by
:class:`ContentGenerationTask` and translated by :class:`LanguageUpdateTask`.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Protocol

from ._util import atomic_write_json, load_json_file
from .api_client import RemoteServiceError, ServiceStatus
from .models import CONTENT_GENERATION, LANGUAGE_UPDATES, TaskOutcome
from .prompts import CONTENT_KEYS, content_prompt
from .translation import TranslationFormatError, Translator, parse_strict, validate_translation

logger = logging.getLogger(__name__)

CONTENT_VERSIONS: tuple[int, ...] = (1, 2, 3, 4, 5, 6)


class GenerationClient(Protocol):
    def generate_text(self, prompt: str) -> str: ...

    def check_status(self) -> ServiceStatus: ...


def version_dir(content_dir: Path, version: int) -> Path:
    return content_dir / f"v{int(version)}"


def language_file(content_dir: Path, version: int, language: str) -> Path:
    return version_dir(content_dir, version) / f"{language}.json"


class ContentGenerationTask:
    name = CONTENT_GENERATION

    def __init__(
        self,
        client: GenerationClient,
        *,
        content_dir: Path,
        versions: tuple[int, ...] = CONTENT_VERSIONS,
        keys: tuple[str, ...] = CONTENT_KEYS,
        base_language: str = "en",
    ) -> None:
        self._client = client
        self._content_dir = content_dir
        self._versions = versions
        self._keys = keys
        self._base_language = base_language

    def generate_version(self, version: int) -> dict[str, str]:
        raw = self._client.generate_text(content_prompt(version, self._keys))
        content = validate_translation(parse_strict(raw), source=dict.fromkeys(self._keys, ""))
        atomic_write_json(language_file(self._content_dir, version, self._base_language), content)
        return content

    def run(self) -> TaskOutcome:
        try:
            status = self._client.check_status()
            if not status.available:
                logger.warning("Content generation skipped, API unavailable: %s", status.message)
                return TaskOutcome.failed(
                    {"statusCode": status.status_code, "message": status.message}, error="service unavailable"
                )
        except Exception as e:
            logger.warning("Content generation aborted: %s", e)
            return TaskOutcome.failed(error=str(e))

        details: dict[str, Any] = {}
        for version in self._versions:
            key = f"version-{version}"
            try:
                content = self.generate_version(version)
            except (RemoteServiceError, TranslationFormatError, OSError) as e:
                logger.warning("Failed to generate content for version %d: %s", version, e)
                details[key] = {"success": False, "error": str(e)}
                continue
            except Exception as e:
                logger.exception("Unexpected error generating content for version %d", version)
                details[key] = {"success": False, "error": str(e)}
                continue
            logger.info("Generated content for version %d (%d keys)", version, len(content))
            details[key] = {"success": True, "keys": len(content)}

        if all(d["success"] for d in details.values()):
            return TaskOutcome.ok(details)
        return TaskOutcome.failed(details)


class LanguageUpdateTask:
    name = LANGUAGE_UPDATES

    def __init__(
        self,
        translator: Translator,
        *,
        content_dir: Path,
        versions: tuple[int, ...] = CONTENT_VERSIONS,
        max_workers: int = 3,
    ) -> None:
        self._translator = translator
        self._content_dir = content_dir
        self._versions = versions
        self._max_workers = max(1, int(max_workers))

    def _translate_one(self, version: int, source: dict[str, str], language: str) -> None:
        translated = self._translator.translate_content(source, language)
        atomic_write_json(language_file(self._content_dir, version, language), translated)

    def update_version(self, version: int) -> dict[str, Any]:
        base = self._translator.base_language
        source_path = language_file(self._content_dir, version, base)
        try:
            source = load_json_file(source_path)
        except FileNotFoundError:
            return {"success": False, "error": f"missing source file {source_path.name}"}
        except (OSError, ValueError) as e:
            return {"success": False, "error": f"unreadable source file {source_path.name}: {e}"}
        try:
            validate_translation(source)
        except TranslationFormatError as e:
            return {"success": False, "error": str(e)}

        targets = [lang for lang in self._translator.supported_languages if lang != base]
        ok_languages = [base]
        failed: dict[str, str] = {}
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = {lang: pool.submit(self._translate_one, version, source, lang) for lang in targets}
            for lang, fut in futures.items():
                try:
                    fut.result()
                except Exception as e:
                    logger.warning("Translation to %s failed for version %d: %s", lang, version, e)
                    failed[lang] = str(e)
                else:
                    ok_languages.append(lang)

        entry: dict[str, Any] = {"success": not failed, "languages": ok_languages}
        if failed:
            entry["failed"] = failed
        return entry

    def run(self) -> TaskOutcome:
        details: dict[str, Any] = {}
        for version in self._versions:
            try:
                entry = self.update_version(version)
            except Exception as e:
                logger.exception("Unexpected error updating languages for version %d", version)
                entry = {"success": False, "error": str(e)}
            if not entry["success"]:
                logger.warning("Language update for version %d incomplete: %s", version, entry.get("error") or entry.get("failed"))
            details[f"version-{version}"] = entry

        if all(d["success"] for d in details.values()):
            return TaskOutcome.ok(details)
        return TaskOutcome.failed(details)
