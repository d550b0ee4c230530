from __future__ import annotations

import io
import zipfile

import pytest

from loop_backend.errors import ParseError
from loop_backend.modules.twine.loader import load_twison_from_bytes
from tests.support.twine_samples import COFFEE_SHOP_HTML, coffee_shop_json_bytes


def _zip(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def test_loads_twison_json() -> None:
    story = load_twison_from_bytes("coffee.json", coffee_shop_json_bytes())
    assert story["name"] == "Coffee Shop Dilemma"
    assert len(story["passages"]) == 2


def test_loads_json_with_utf8_bom() -> None:
    story = load_twison_from_bytes("coffee.JSON", b"\xef\xbb\xbf" + coffee_shop_json_bytes())
    assert story["name"] == "Coffee Shop Dilemma"


def test_loads_twine_html() -> None:
    story = load_twison_from_bytes("coffee.html", COFFEE_SHOP_HTML.encode("utf-8"))
    assert story["ifid"] == "ABC-123"


def test_zip_uses_first_entry_that_parses() -> None:
    data = _zip(
        {
            "readme.txt": b"ignored",
            "notes.html": b"<html>not a twine export</html>",
            "story/coffee.json": coffee_shop_json_bytes(),
        }
    )
    story = load_twison_from_bytes("export.zip", data)
    assert story["name"] == "Coffee Shop Dilemma"


def test_zip_without_export_entries_is_rejected() -> None:
    with pytest.raises(ParseError) as exc:
        load_twison_from_bytes("export.zip", _zip({"readme.txt": b"hi"}))
    assert "does not contain" in exc.value.message


def test_zip_whose_entries_all_fail_reports_last_parse_error() -> None:
    data = _zip({"a.json": b"{broken", "b.html": b"<html></html>"})
    with pytest.raises(ParseError) as exc:
        load_twison_from_bytes("export.zip", data)
    assert "Unsupported Twine export format" in exc.value.message


def test_corrupt_zip_is_rejected() -> None:
    with pytest.raises(ParseError):
        load_twison_from_bytes("export.zip", b"PK-not-really")


@pytest.mark.parametrize(
    "filename, data, fragment",
    [
        ("story.txt", b"{}", "Unsupported file type"),
        ("story.json", b"   ", "is empty"),
        ("story.json", b"{broken", "Unable to parse JSON"),
        ("story.html", b"<html></html>", "Unsupported Twine export format"),
    ],
)
def test_unreadable_uploads_raise_parse_error(filename: str, data: bytes, fragment: str) -> None:
    with pytest.raises(ParseError) as exc:
        load_twison_from_bytes(filename, data)
    assert fragment in exc.value.message
