from ledgerly.services.ml.normalization import (
    expand_abbreviations,
    extract_merchant,
    first_words,
    normalize,
    split_concatenated_words,
)


def test_normalize_strips_upi_noise_and_leads_with_merchant():
    assert normalize("UPI/PAYZOMATO/9876543210@ybl/Ref 1234") == "zomato pay 9876543210"


def test_normalize_card_swipe():
    assert normalize("POS 4567 STARBUCKS COFFEE") == "starbucks pos 4567 coffee"


def test_normalize_same_merchant_different_references():
    a = normalize("POS 4567 STARBUCKS COFFEE Ref 99881")
    b = normalize("POS 4567 STARBUCKS COFFEE Ref 12345")
    assert a == b


def test_normalize_empty():
    assert normalize(None) == ""
    assert normalize("   ") == ""


def test_split_concatenated_words_uses_brands_and_suffixes():
    assert split_concatenated_words("asianpaintsintdiv") == "asian paints intdiv"


def test_expand_abbreviations():
    assert expand_abbreviations("neft sal") == "neft transfer salary"


def test_extract_merchant_aliases():
    assert extract_merchant("payswiggy order") == "swiggy order"


def test_first_words_limits_count():
    assert first_words("POS 4567 STARBUCKS COFFEE") == "starbucks pos 4567"
    assert first_words("POS 4567 STARBUCKS COFFEE", count=1) == "starbucks"
