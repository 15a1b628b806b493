from __future__ import annotations

import base64
import binascii
import logging
import random
import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from ._util import atomic_write_bytes, file_timestamp, to_iso, utc_now
from .api_client import FixedBackoff, RemoteServiceError, call_with_retry_result
from .models import BANNER_UPDATES, TaskOutcome
from .prompts import banner_prompt

logger = logging.getLogger(__name__)

PAGE_TYPES: tuple[str, ...] = ("main", "news", "history", "technology", "vision", "company", "electronics", "cnc")

IMAGE_MAX_ATTEMPTS = 3
IMAGE_RETRY_DELAY_S = 2.0

# Smaller payloads are placeholders; rejected as transient failures.
_MIN_IMAGE_BYTES = 100

STATUS_UPDATED = "updated"
STATUS_KEPT_EXISTING = "kept_existing"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class BannerSpec:
    page_type: str
    prefix: str
    count: int
    variants: int

    def __post_init__(self) -> None:
        if self.page_type not in PAGE_TYPES:
            raise ValueError(f"unknown banner page type: {self.page_type}")
        if self.count < 1 or self.variants < 1:
            raise ValueError(f"banner count and variants must be >= 1: {self}")

    def file_name(self, slot: int, variant: int) -> str:
        return f"{self.prefix}{slot}-v{variant}.png"

    def slot_key(self, slot: int) -> str:
        return f"{self.prefix}{slot}"


DEFAULT_BANNER_SPECS: tuple[BannerSpec, ...] = (
    BannerSpec("main", "index-hero-", count=3, variants=4),
    BannerSpec("news", "news-hero-", count=1, variants=4),
    BannerSpec("history", "history-hero-", count=1, variants=4),
    BannerSpec("technology", "technology-hero-", count=1, variants=5),
    BannerSpec("vision", "vision-card-", count=4, variants=5),
    BannerSpec("company", "company-overview-", count=3, variants=4),
    BannerSpec("electronics", "electronics-", count=1, variants=4),
    BannerSpec("cnc", "cnc-", count=1, variants=4),
)


class ImageClient(Protocol):
    def generate_image(self, prompt: str) -> str: ...


@dataclass(frozen=True)
class BannerResult:
    status: str
    path: Path
    attempts: int
    error: str | None = None
    backup_path: Path | None = None

    @property
    def success(self) -> bool:
        return self.status == STATUS_UPDATED


def _decode_image(b64: str) -> bytes:
    try:
        data = base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise RemoteServiceError(f"image payload is not valid base64: {e}", transient=True) from e
    if len(data) < _MIN_IMAGE_BYTES:
        raise RemoteServiceError(f"image payload too small ({len(data)} bytes)", transient=True)
    return data


class BannerUpdater:
    """Generates one banner image into its slot file."""

    def __init__(
        self,
        client: ImageClient,
        *,
        banner_dir: Path,
        max_attempts: int = IMAGE_MAX_ATTEMPTS,
        retry_delay_s: float = IMAGE_RETRY_DELAY_S,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self.banner_dir = banner_dir
        self.backup_dir = banner_dir / "backup"
        self._max_attempts = max_attempts
        self._backoff = FixedBackoff(retry_delay_s)
        self._sleep = sleep

    def backup(self, path: Path) -> Path | None:
        """Copy an existing asset into ``backup/``. Best-effort: never raises."""
        if not path.exists():
            return None
        backup_path = self.backup_dir / f"{path.stem}.{file_timestamp()}{path.suffix}"
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, backup_path)
        except OSError as e:
            logger.warning("Failed to back up banner %s: %s", path.name, e)
            return None
        logger.info("Backed up banner %s -> %s", path.name, backup_path)
        return backup_path

    def update_banner(self, page_type: str, file_name: str, *, variant: int = 1) -> BannerResult:
        path = self.banner_dir / file_name
        prompt = banner_prompt(page_type, variant)
        logger.info("Generating banner %s (%s, variant %d)", file_name, page_type, variant)

        try:
            result = call_with_retry_result(
                lambda: _decode_image(self._client.generate_image(prompt)),
                max_attempts=self._max_attempts,
                backoff=self._backoff,
                sleep=self._sleep,
                label=f"generate_image[{file_name}]",
            )
        except RemoteServiceError as e:
            if path.exists():
                logger.warning("Banner %s not regenerated, keeping existing asset: %s", file_name, e)
                return BannerResult(STATUS_KEPT_EXISTING, path, attempts=e.attempts, error=str(e))
            logger.warning("Banner %s failed with no prior asset: %s", file_name, e)
            return BannerResult(STATUS_FAILED, path, attempts=e.attempts, error=str(e))

        backup_path = self.backup(path)
        try:
            atomic_write_bytes(path, result.value)
        except OSError as e:
            logger.warning("Failed to write banner %s: %s", path, e)
            status = STATUS_KEPT_EXISTING if path.exists() else STATUS_FAILED
            return BannerResult(status, path, attempts=result.attempts, error=str(e), backup_path=backup_path)

        logger.info("Saved banner %s (%d bytes, %d attempt(s))", path, len(result.value), result.attempts)
        return BannerResult(STATUS_UPDATED, path, attempts=result.attempts, backup_path=backup_path)

    def get_status(self) -> dict[str, Any]:
        return banner_dir_status(self.banner_dir)


def banner_dir_status(banner_dir: Path) -> dict[str, Any]:
    """List banner files with size and modification time (backups excluded)."""
    files: list[dict[str, Any]] = []
    if banner_dir.is_dir():
        for p in sorted(banner_dir.iterdir()):
            if not p.is_file():
                continue
            st = p.stat()
            files.append(
                {
                    "file": p.name,
                    "lastModified": to_iso(datetime.fromtimestamp(st.st_mtime, tz=UTC)),
                    "size": st.st_size,
                }
            )
    return {
        "totalFiles": len(files),
        "lastUpdate": max((f["lastModified"] for f in files), default=None),
        "files": files,
    }


def banner_config(specs: tuple[BannerSpec, ...] = DEFAULT_BANNER_SPECS) -> dict[str, dict[str, Any]]:
    return {s.page_type: {"prefix": s.prefix, "count": s.count, "variants": s.variants} for s in specs}


class BannerTask:
    """Regenerates one variant of every banner slot."""

    name = BANNER_UPDATES

    def __init__(
        self,
        updater: BannerUpdater,
        *,
        specs: tuple[BannerSpec, ...] = DEFAULT_BANNER_SPECS,
        rng: random.Random | None = None,
    ) -> None:
        self._updater = updater
        self._specs = specs
        self._rng = rng or random.Random()

    def _run_slots(self) -> tuple[bool, dict[str, Any]]:
        all_ok = True
        details: dict[str, Any] = {}
        for spec in self._specs:
            for slot in range(1, spec.count + 1):
                key = spec.slot_key(slot)
                variant = self._rng.randint(1, spec.variants)
                file_name = spec.file_name(slot, variant)
                try:
                    res = self._updater.update_banner(spec.page_type, file_name, variant=variant)
                except Exception as e:
                    logger.warning("Error generating banner %s: %s", key, e)
                    details[key] = {"success": False, "status": STATUS_FAILED, "pageType": spec.page_type, "variant": variant, "fileName": file_name, "error": str(e)}
                    all_ok = False
                    continue

                entry: dict[str, Any] = {
                    "success": res.success,
                    "status": res.status,
                    "pageType": spec.page_type,
                    "variant": variant,
                    "fileName": file_name,
                    "attempts": res.attempts,
                }
                if res.error:
                    entry["error"] = res.error
                details[key] = entry
                if not res.success:
                    all_ok = False
        return all_ok, details

    def run(self) -> TaskOutcome:
        try:
            logger.info("Starting banner update for %d banner types", len(self._specs))
            all_ok, details = self._run_slots()
        except Exception as e:
            logger.warning("Banner update aborted: %s", e)
            return TaskOutcome.failed(error=str(e))

        logger.info("Banner update completed with %s", "success" if all_ok else "some failures")
        return TaskOutcome(success=all_ok, timestamp=utc_now(), details=details)
