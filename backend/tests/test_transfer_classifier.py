from ledgerly.services.ml.transfer_classifier import (
    TransferClassifier,
    clean_name,
    is_personal_vpa,
    looks_like_merchant,
    name_from_vpa,
)


def test_p2p_upi_to_a_person():
    result = TransferClassifier("UPI/RAHUL SHARMA/rahul.sharma@okaxis/payment").classify()
    assert result is not None
    assert result.tx_kind == "transfer_p2p"
    assert result.confidence == 0.90
    assert result.counterparty_name == "RAHUL SHARMA"


def test_self_transfer():
    result = TransferClassifier("IMPS fund transfer to self").classify()
    assert result.tx_kind == "transfer_self"
    assert result.confidence == 0.95
    assert result.subcategory_slug == "transfer-self"


def test_wallet_load():
    result = TransferClassifier("Paytm wallet topup").classify()
    assert result.tx_kind == "transfer_wallet"
    assert result.confidence == 0.90
    assert result.counterparty_name == "Paytm"


def test_card_spend_is_not_a_transfer():
    assert TransferClassifier("POS STARBUCKS COFFEE").classify() is None


def test_vpa_helpers():
    assert name_from_vpa("rahul.sharma@okaxis") == "Rahul Sharma"
    assert name_from_vpa("9876543210@ybl") is None
    assert is_personal_vpa("rahul.sharma@okaxis")
    assert looks_like_merchant("zomato@hdfcbank", None)
    assert looks_like_merchant(None, "Acme Traders Pvt Ltd")
    assert not looks_like_merchant("rahul.sharma@okaxis", "Rahul Sharma")
    assert clean_name("UPI RAHUL SHARMA") == "RAHUL SHARMA"
