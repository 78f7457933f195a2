import pytest

from gateway.core.payload.codes import as_int, ensure_string, to_attribute_code


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("431", "431"),
        (431, "431"),
        ("VL431", "431"),
        ("vl1072", "1072"),
        (" Vl32 ", "32"),
        ("VLx", None),
        ("abc", None),
        ("", None),
        (None, None),
        (True, None),
    ],
)
def test_to_attribute_code(raw, expected):
    assert to_attribute_code(raw) == expected


def test_ensure_string_trims_and_drops_blank():
    assert ensure_string("  a ") == "a"
    assert ensure_string("   ") is None
    assert ensure_string(None) is None
    assert ensure_string(5) == "5"


def test_as_int_accepts_whole_numbers_only():
    assert as_int("5") == 5
    assert as_int("5.0") == 5
    assert as_int(7) == 7
    assert as_int("5.5") is None
    assert as_int("nan") is None
    assert as_int("inf") is None
    assert as_int("x") is None
    assert as_int(False) is None
    assert as_int(None) is None
