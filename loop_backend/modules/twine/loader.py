"""Decode uploaded Twine exports (Twison JSON, Twine HTML or a zip of either)."""

from __future__ import annotations

import io
import json
import logging
import zipfile

from loop_backend.errors import ParseError
from loop_backend.modules.twine.html_export import parse_twine_html

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = (".json", ".html", ".htm")


def _decode_text(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


def parse_export_text(raw: str, source_name: str):
    trimmed = (raw or "").strip()
    if not trimmed:
        raise ParseError(f'The file "{source_name}" is empty.')

    if trimmed.startswith("{") or trimmed.startswith("["):
        try:
            return json.loads(trimmed)
        except json.JSONDecodeError as exc:
            raise ParseError(f'Unable to parse JSON from "{source_name}": {exc.msg}') from exc

    if "<tw-storydata" in trimmed.lower():
        return parse_twine_html(trimmed)

    raise ParseError(
        f'Unsupported Twine export format in "{source_name}". Upload Twison JSON or Twine HTML.'
    )


def _load_from_zip(data: bytes) -> object:
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise ParseError("The uploaded zip archive could not be read.") from exc

    with archive:
        entries = [
            info
            for info in archive.infolist()
            if not info.is_dir() and info.filename.lower().endswith(TEXT_SUFFIXES)
        ]
        if not entries:
            raise ParseError("The uploaded zip does not contain a Twison JSON or Twine HTML export.")

        last_error: ParseError | None = None
        for info in entries:
            try:
                return parse_export_text(_decode_text(archive.read(info)), info.filename)
            except ParseError as exc:
                logger.debug("skipping zip entry %s: %s", info.filename, exc.message)
                last_error = exc

    raise last_error or ParseError("No Twine export in the uploaded zip could be parsed.")


def load_twison_from_bytes(filename: str | None, data: bytes):
    """Return the raw Twison story held in an uploaded file.

    The result is not repaired or validated; callers run those steps.
    """
    name = (filename or "").strip().lower()
    if name.endswith(TEXT_SUFFIXES):
        return parse_export_text(_decode_text(data), filename or "twine-file")
    if name.endswith(".zip"):
        return _load_from_zip(data)
    raise ParseError("Unsupported file type. Upload a Twine .zip, .json, or .html export.")
