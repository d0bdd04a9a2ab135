"""Destination address and amount validation.

Pure, synchronous checks run on every edit of the address or amount field.
Results are never cached: the same string can be valid on one chain and
invalid on another.

Address syntax is checked with the bip_utils decoders, which verify the
Base58Check / Bech32 / EIP-55 / StrKey checksums as well as the shape.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from bip_utils import (
    Base58ChecksumError,
    Base58Decoder,
    Bech32ChecksumError,
    EthAddrDecoder,
    SegwitBech32Decoder,
    SolAddrDecoder,
    TrxAddrDecoder,
    XlmAddrDecoder,
    XlmAddrTypes,
    XrpAddrDecoder,
)

from transferflow.chains import (
    AddressRules,
    AssetConfig,
    ChainFamily,
    MemoKind,
    get_address_rules,
)
from transferflow.errors import ReasonCode

logger = logging.getLogger(__name__)

_DECODE_ERRORS = (ValueError, TypeError, Base58ChecksumError, Bech32ChecksumError)

_EVM_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
_TAG_PATTERN = re.compile(r"[0-9]{1,10}")

MAX_XRP_TAG = 2**32 - 1
MAX_XLM_MEMO_BYTES = 28


@dataclass(frozen=True)
class AddressCheck:
    """Outcome of an address validation."""

    valid: bool
    error: Optional[ReasonCode] = None
    field: str = "address"

    @classmethod
    def ok(cls) -> "AddressCheck":
        return cls(valid=True)

    @classmethod
    def fail(cls, error: ReasonCode, field: str = "address") -> "AddressCheck":
        return cls(valid=False, error=error, field=field)


def _decodes(decode: Callable[[], object]) -> bool:
    try:
        decode()
        return True
    except _DECODE_ERRORS:
        return False


def _check_evm(address: str, rules: AddressRules) -> bool:
    if not _EVM_PATTERN.match(address):
        return False
    body = address[2:]
    if body == body.lower() or body == body.upper():
        # No checksum encoded
        return True
    return _decodes(lambda: EthAddrDecoder.DecodeAddr(address, skip_chksum_enc=False))


def _check_base58_versioned(address: str, rules: AddressRules) -> bool:
    try:
        decoded = Base58Decoder.CheckDecode(address)
    except _DECODE_ERRORS:
        return False
    if len(decoded) != 21:
        return False
    version = decoded[:1]
    return version in rules.p2pkh_versions or version in rules.p2sh_versions


def _check_segwit(address: str, rules: AddressRules) -> bool:
    if not rules.hrp or not address.lower().startswith(rules.hrp + "1"):
        return False
    try:
        witness_version, program = SegwitBech32Decoder.Decode(rules.hrp, address)
    except _DECODE_ERRORS:
        return False
    if witness_version == 0:
        return len(program) in (20, 32)
    return witness_version == 1 and len(program) == 32


def _check_utxo(address: str, rules: AddressRules) -> bool:
    return _check_segwit(address, rules) or _check_base58_versioned(address, rules)


def _check_account(address: str, rules: AddressRules) -> bool:
    if rules.scheme == "trx":
        return _decodes(lambda: TrxAddrDecoder.DecodeAddr(address))
    if rules.scheme == "sol":
        return _decodes(lambda: SolAddrDecoder.DecodeAddr(address))
    return False


def _check_tagged(address: str, rules: AddressRules) -> bool:
    if rules.memo_kind == MemoKind.TAG:
        return _decodes(lambda: XrpAddrDecoder.DecodeAddr(address))
    if rules.memo_kind == MemoKind.MEMO:
        return _decodes(lambda: XlmAddrDecoder.DecodeAddr(address, addr_type=XlmAddrTypes.PUB_KEY))
    return False


_FAMILY_CHECKS: dict[ChainFamily, Callable[[str, AddressRules], bool]] = {
    ChainFamily.EVM: _check_evm,
    ChainFamily.UTXO: _check_utxo,
    ChainFamily.ACCOUNT: _check_account,
    ChainFamily.TAGGED: _check_tagged,
}


def _check_memo(memo: Optional[str], rules: AddressRules) -> bool:
    if not memo:
        return True
    if rules.memo_kind == MemoKind.TAG:
        return _TAG_PATTERN.fullmatch(memo) is not None and int(memo) <= MAX_XRP_TAG
    if rules.memo_kind == MemoKind.MEMO:
        return len(memo.encode("utf-8")) <= MAX_XLM_MEMO_BYTES
    return False


class AddressValidator:
    """Validates destination addresses against per-chain syntax rules.

    Rules come from the bundled chain table unless a lookup is injected
    (e.g. rules fetched from the exchange). Unknown chains fail closed.
    """

    def __init__(self, rules_lookup: Callable[[str], Optional[AddressRules]] = get_address_rules):
        self._rules_lookup = rules_lookup

    def validate(self, chain: str, address: str, memo: Optional[str] = None) -> AddressCheck:
        """Validate a destination address (and optional memo/tag).

        Args:
            chain: Chain id (eth, btc, xrp, ...)
            address: Raw address as typed
            memo: Destination tag or memo, if any

        Returns:
            AddressCheck with the first failing reason
        """
        rules = self._rules_lookup(chain) if chain else None
        if rules is None:
            return AddressCheck.fail(ReasonCode.UNSUPPORTED_CHAIN)

        check = _FAMILY_CHECKS.get(rules.family)
        if check is None:
            return AddressCheck.fail(ReasonCode.UNSUPPORTED_CHAIN)

        address = (address or "").strip()
        if not address:
            return AddressCheck.fail(ReasonCode.ADDRESS_REQUIRED)

        if not check(address, rules):
            return AddressCheck.fail(ReasonCode.INVALID_ADDRESS)

        if not _check_memo(memo.strip() if memo else None, rules):
            return AddressCheck.fail(ReasonCode.INVALID_MEMO, field="memo")

        return AddressCheck.ok()


_default_validator = AddressValidator()


def validate_address(chain: str, address: str, memo: Optional[str] = None) -> AddressCheck:
    """Validate an address with the bundled rules."""
    return _default_validator.validate(chain, address, memo)


def parse_amount(raw) -> Optional[Decimal]:
    """Parse a user-entered amount, None if it is not a finite number."""
    if isinstance(raw, Decimal):
        value = raw
    else:
        text = str(raw or "").strip().replace(",", "")
        if not text:
            return None
        try:
            value = Decimal(text)
        except InvalidOperation:
            return None
    return value if value.is_finite() else None


def validate_amount(
    raw,
    asset: Optional[AssetConfig],
    available: Optional[Decimal],
) -> tuple[Optional[Decimal], Optional[ReasonCode]]:
    """Validate a withdrawal amount.

    Args:
        raw: Amount as typed (str or Decimal)
        asset: Asset limits, None to skip min/max checks
        available: Spendable balance, None if it could not be loaded

    Returns:
        (parsed amount, first failing reason or None)
    """
    amount = parse_amount(raw)
    if amount is None:
        return None, ReasonCode.INVALID_AMOUNT
    if amount <= 0:
        return amount, ReasonCode.AMOUNT_NOT_POSITIVE
    if asset is not None:
        if amount < asset.min_withdrawal:
            return amount, ReasonCode.BELOW_MINIMUM
        if amount > asset.max_withdrawal:
            return amount, ReasonCode.ABOVE_MAXIMUM
    if available is None:
        return amount, ReasonCode.BALANCE_UNAVAILABLE
    if amount > available:
        return amount, ReasonCode.INSUFFICIENT_BALANCE
    return amount, None


def validate_purchase_total(
    price: Decimal,
    total_cost: Decimal,
    available: Optional[Decimal],
) -> Optional[ReasonCode]:
    """Validate that a purchase (price plus fees) is covered by the balance."""
    if price <= 0:
        return ReasonCode.AMOUNT_NOT_POSITIVE
    if available is None:
        return ReasonCode.BALANCE_UNAVAILABLE
    if total_cost > available:
        return ReasonCode.INSUFFICIENT_BALANCE
    return None
