import pytest

from scripts.preview_scores import _parse_filter


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("closed=false", ("closed", False)),
        ("tag_slug=politics", ("tag_slug", "politics")),
        ("limit=5", ("limit", 5)),
        ("archived=True", ("archived", True)),
        ("=value", None),
        ("no-separator", None),
    ],
)
def test_parse_filter(raw, expected):
    assert _parse_filter(raw) == expected
