from datetime import datetime, timezone, timedelta

import pytest

from ..naming import (
    sanitize_path, compute_content_hash, split_extension, backup_name,
    format_rfc3339, parse_rfc3339
)


@pytest.mark.parametrize("value,expected", [
    ("Vorlage 12/2024", "Vorlage-12/2024"),
    ("Änderung  der Satzung", "Anderung-der-Satzung"),
    ("Gebührenordnung (Entwurf)", "Gebuhrenordnung-Entwurf"),
    ("Straße", "Strasse"),
    ("a -- b", "a-b"),
    ("", ""),
])
def test_sanitize_path(value, expected):
    assert sanitize_path(value) == expected


def test_compute_content_hash():
    assert compute_content_hash(b"") == "d41d8cd98f00b204e9800998ecf8427e"


def test_split_extension():
    assert split_extension("folder/vo12.anlage.pdf") == ("vo12.anlage", ".pdf")
    assert split_extension("README") == ("README", "")


def test_backup_name():
    updated = datetime(2024, 3, 1, 9, 5, 7, tzinfo=timezone.utc)
    assert backup_name("vo12.html", updated) == "vo12_2024-03-01-09-05-07.html"
    assert backup_name("vo12.html", updated, "0cc175b9") == "vo12_2024-03-01-09-05-07_0cc175b9.html"


def test_rfc3339():
    value = datetime(2024, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert format_rfc3339(value) == "2024-03-01T12:00:00Z"
    assert parse_rfc3339("2024-03-01T12:00:00Z") == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        parse_rfc3339("")
    with pytest.raises(ValueError):
        parse_rfc3339("yesterday")
