"""Tests for destination address and amount validation."""

from decimal import Decimal

import pytest

from transferflow.chains import AddressRules, ChainFamily, get_asset
from transferflow.errors import ReasonCode
from transferflow.validation import (
    AddressValidator,
    parse_amount,
    validate_address,
    validate_amount,
    validate_purchase_total,
)

EIP55_ADDRESSES = [
    "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
    "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359",
    "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB",
    "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb",
]

BTC_P2PKH = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
BTC_P2SH = "3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy"
BTC_BECH32 = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"
TRX_ADDRESS = "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"
XRP_ADDRESS = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
SOL_ADDRESS = "11111111111111111111111111111111"


class TestEvmAddresses:
    """Tests for EVM address validation."""

    @pytest.mark.parametrize("address", EIP55_ADDRESSES)
    def test_checksummed_addresses_are_valid(self, address):
        """Test that EIP-55 checksummed addresses pass."""
        assert validate_address("eth", address).valid

    @pytest.mark.parametrize("address", EIP55_ADDRESSES)
    def test_single_case_addresses_skip_checksum(self, address):
        """Test that all-lower and all-upper addresses are accepted."""
        assert validate_address("eth", address.lower()).valid
        assert validate_address("bsc", "0x" + address[2:].upper()).valid

    def test_bad_checksum_is_rejected(self):
        """Test that a mixed-case address with a wrong checksum fails."""
        broken = "0x5aaeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
        check = validate_address("eth", broken)

        assert not check.valid
        assert check.error == ReasonCode.INVALID_ADDRESS

    @pytest.mark.parametrize(
        "address",
        [
            "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAe",  # 39 hex
            "5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",  # no prefix
            "0xZZZeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
            BTC_P2PKH,
        ],
    )
    def test_malformed_addresses_are_rejected(self, address):
        """Test that malformed EVM addresses fail."""
        assert validate_address("eth", address).error == ReasonCode.INVALID_ADDRESS

    @pytest.mark.parametrize("chain", ["eth", "bsc", "matic", "avax", "arb", "op", "base", "polygon"])
    def test_all_evm_chains_share_rules(self, chain):
        """Test that every EVM chain accepts the same address."""
        assert validate_address(chain, EIP55_ADDRESSES[0]).valid


class TestUtxoAddresses:
    """Tests for Bitcoin-family address validation."""

    @pytest.mark.parametrize("address", [BTC_P2PKH, BTC_P2SH, BTC_BECH32])
    def test_bitcoin_formats_are_valid(self, address):
        """Test P2PKH, P2SH and native segwit addresses."""
        assert validate_address("btc", address).valid

    def test_base58_checksum_typo_is_rejected(self):
        """Test that a single changed character breaks the checksum."""
        assert not validate_address("btc", BTC_P2PKH[:-1] + "b").valid

    def test_bech32_checksum_typo_is_rejected(self):
        """Test that a bech32 typo is detected."""
        assert not validate_address("btc", BTC_BECH32[:-1] + "p").valid

    def test_version_byte_must_match_chain(self):
        """Test that a Bitcoin P2PKH address is not a Litecoin or Dogecoin address."""
        assert not validate_address("ltc", BTC_P2PKH).valid
        assert not validate_address("doge", BTC_P2PKH).valid

    def test_hrp_must_match_chain(self):
        """Test that a bc1 address is rejected on Litecoin."""
        assert not validate_address("ltc", BTC_BECH32).valid


class TestAccountAddresses:
    """Tests for Solana and Tron address validation."""

    def test_tron_address_is_valid(self):
        assert validate_address("trx", TRX_ADDRESS).valid

    def test_tron_checksum_typo_is_rejected(self):
        assert not validate_address("trx", TRX_ADDRESS[:-1] + "u").valid

    def test_solana_address_is_valid(self):
        assert validate_address("sol", SOL_ADDRESS).valid

    @pytest.mark.parametrize("address", ["abc", "0OIl0OIl0OIl0OIl0OIl0OIl0OIl0OIl", EIP55_ADDRESSES[0]])
    def test_solana_malformed_is_rejected(self, address):
        assert not validate_address("sol", address).valid

    def test_tron_address_is_not_solana(self):
        """Test that a Tron address does not pass as a Solana key."""
        assert not validate_address("sol", TRX_ADDRESS).valid


class TestTaggedAddresses:
    """Tests for XRP and Stellar destinations."""

    def test_xrp_address_without_tag(self):
        assert validate_address("xrp", XRP_ADDRESS).valid

    def test_xrp_numeric_tag_is_valid(self):
        assert validate_address("xrp", XRP_ADDRESS, memo="12345").valid
        assert validate_address("xrp", XRP_ADDRESS, memo="4294967295").valid

    @pytest.mark.parametrize(
        "tag", ["abc", "-1", "4294967296", "12.5", "²", "١٢٣", "12345678901"]
    )
    def test_xrp_bad_tag_is_rejected(self, tag):
        """Test that non-numeric or out-of-range tags fail on the memo field."""
        check = validate_address("xrp", XRP_ADDRESS, memo=tag)

        assert not check.valid
        assert check.error == ReasonCode.INVALID_MEMO
        assert check.field == "memo"

    def test_xrp_address_checksum_typo_is_rejected(self):
        assert not validate_address("xrp", XRP_ADDRESS[:-1] + "j").valid

    @pytest.mark.parametrize("address", ["GABC", XRP_ADDRESS, "G" + "A" * 55])
    def test_stellar_malformed_is_rejected(self, address):
        assert validate_address("xlm", address).error == ReasonCode.INVALID_ADDRESS


class TestAddressValidator:
    """Tests for general validator behaviour."""

    def test_empty_address_is_required(self):
        assert validate_address("eth", "").error == ReasonCode.ADDRESS_REQUIRED
        assert validate_address("eth", "   ").error == ReasonCode.ADDRESS_REQUIRED

    def test_unknown_chain_fails_closed(self):
        """Test that an unknown chain is rejected rather than accepted."""
        assert validate_address("unknown", EIP55_ADDRESSES[0]).error == ReasonCode.UNSUPPORTED_CHAIN
        assert validate_address("", EIP55_ADDRESSES[0]).error == ReasonCode.UNSUPPORTED_CHAIN

    def test_memo_on_chain_without_memo_is_rejected(self):
        check = validate_address("eth", EIP55_ADDRESSES[0], memo="123")
        assert check.error == ReasonCode.INVALID_MEMO

    def test_surrounding_whitespace_is_ignored(self):
        assert validate_address("eth", f"  {EIP55_ADDRESSES[0]}  ").valid

    def test_injected_rules_lookup(self):
        """Test that rules can come from an injected lookup."""
        validator = AddressValidator(rules_lookup=lambda chain: AddressRules(family=ChainFamily.EVM))

        assert validator.validate("anything", EIP55_ADDRESSES[0]).valid

    def test_same_address_differs_by_chain(self):
        """Test that results depend on the chain, never on earlier calls."""
        assert validate_address("eth", EIP55_ADDRESSES[0]).valid
        assert not validate_address("btc", EIP55_ADDRESSES[0]).valid
        assert validate_address("eth", EIP55_ADDRESSES[0]).valid


class TestAmountValidation:
    """Tests for amount parsing and limits."""

    def test_parse_amount(self):
        assert parse_amount("1.5") == Decimal("1.5")
        assert parse_amount("1,000.25") == Decimal("1000.25")
        assert parse_amount(Decimal("2")) == Decimal("2")
        assert parse_amount("") is None
        assert parse_amount("abc") is None
        assert parse_amount("NaN") is None
        assert parse_amount("Infinity") is None

    def test_below_minimum(self):
        """Test that 0.0005 ETH against a 0.001 minimum is rejected."""
        amount, reason = validate_amount("0.0005", get_asset("ETH"), Decimal("1"))

        assert amount == Decimal("0.0005")
        assert reason == ReasonCode.BELOW_MINIMUM

    def test_above_maximum(self):
        _, reason = validate_amount("1000", get_asset("ETH"), Decimal("5000"))
        assert reason == ReasonCode.ABOVE_MAXIMUM

    def test_amount_equal_to_balance_is_valid(self):
        amount, reason = validate_amount("1.0", get_asset("ETH"), Decimal("1.0"))

        assert amount == Decimal("1.0")
        assert reason is None

    def test_insufficient_balance(self):
        _, reason = validate_amount("1.5", get_asset("ETH"), Decimal("1.0"))
        assert reason == ReasonCode.INSUFFICIENT_BALANCE

    def test_unknown_balance(self):
        _, reason = validate_amount("0.5", get_asset("ETH"), None)
        assert reason == ReasonCode.BALANCE_UNAVAILABLE

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("abc", ReasonCode.INVALID_AMOUNT),
            ("", ReasonCode.INVALID_AMOUNT),
            ("0", ReasonCode.AMOUNT_NOT_POSITIVE),
            ("-1", ReasonCode.AMOUNT_NOT_POSITIVE),
        ],
    )
    def test_unusable_amounts(self, raw, expected):
        _, reason = validate_amount(raw, get_asset("ETH"), Decimal("10"))
        assert reason == expected

    def test_purchase_total_includes_fees(self):
        """Test that price plus fees must be covered."""
        assert validate_purchase_total(Decimal("1"), Decimal("1.025"), Decimal("1.025")) is None
        assert (
            validate_purchase_total(Decimal("1"), Decimal("1.025"), Decimal("1"))
            == ReasonCode.INSUFFICIENT_BALANCE
        )
        assert validate_purchase_total(Decimal("1"), Decimal("1.025"), None) == ReasonCode.BALANCE_UNAVAILABLE
