from utils import safe_card_stem


def test_safe_card_stem_basic():
    assert safe_card_stem("John Doe") == "John_Doe"


def test_safe_card_stem_strips_weird_chars():
    assert safe_card_stem("  A/B:C*D?  ") == "ABCD"


def test_safe_card_stem_empty_fallback():
    assert safe_card_stem("") == "guest"
    assert safe_card_stem("   ") == "guest"
    assert safe_card_stem(None) == "guest"


def test_safe_card_stem_dedupes_repeats():
    used = set()
    assert safe_card_stem("John Doe", used) == "John_Doe"
    assert safe_card_stem("john doe", used) == "john_doe_2"
    assert safe_card_stem("John  Doe", used) == "John_Doe_3"
