"""Bundled chain, asset and fee tables.

These are the static address validation rules and the default fee schedule
used when the exchange fee estimator is unreachable.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional


class ChainFamily(str, Enum):
    """Address syntax family."""

    EVM = "evm"          # 0x-prefixed hex, EIP-55 checksum
    UTXO = "utxo"        # Base58Check / Bech32 segwit
    ACCOUNT = "account"  # Account-model chains with checksummed encodings
    TAGGED = "tagged"    # Ledgers routing deposits by destination tag / memo


class MemoKind(str, Enum):
    """Kind of secondary routing field a chain accepts."""

    TAG = "tag"    # XRP destination tag (uint32)
    MEMO = "memo"  # Stellar text memo


@dataclass(frozen=True)
class AddressRules:
    """Syntax rules for destination addresses on one chain."""

    family: ChainFamily
    p2pkh_versions: tuple[bytes, ...] = ()
    p2sh_versions: tuple[bytes, ...] = ()
    hrp: Optional[str] = None
    memo_kind: Optional[MemoKind] = None
    scheme: Optional[str] = None  # Encoding within the family (sol, trx)


@dataclass(frozen=True)
class ChainConfig:
    """A supported network."""

    chain_id: str
    name: str
    native: str
    confirmations: int
    rules: AddressRules

    @property
    def family(self) -> ChainFamily:
        return self.rules.family

    @property
    def estimated_time(self) -> str:
        return f"~{self.confirmations * 10} seconds"


@dataclass(frozen=True)
class AssetConfig:
    """A withdrawable asset and its limits."""

    symbol: str
    name: str
    chain: str
    min_withdrawal: Decimal
    max_withdrawal: Decimal
    fee_key: str  # key into FEE_SCHEDULES (chain for natives, symbol for tokens)


@dataclass(frozen=True)
class FeeSchedule:
    """Default fees applied when no remote estimate is available."""

    network_fee: Decimal
    platform_fee_percent: Decimal = Decimal("0")


_EVM = AddressRules(family=ChainFamily.EVM)

CHAINS: dict[str, ChainConfig] = {
    # EVM networks
    "eth": ChainConfig("eth", "Ethereum", "ETH", 12, _EVM),
    "bsc": ChainConfig("bsc", "BNB Smart Chain", "BNB", 15, _EVM),
    "matic": ChainConfig("matic", "Polygon", "MATIC", 128, _EVM),
    "avax": ChainConfig("avax", "Avalanche C-Chain", "AVAX", 20, _EVM),
    "arb": ChainConfig("arb", "Arbitrum One", "ETH", 20, _EVM),
    "op": ChainConfig("op", "Optimism", "ETH", 20, _EVM),
    "base": ChainConfig("base", "Base", "ETH", 20, _EVM),
    # NFT marketplace network ids
    "ethereum": ChainConfig("ethereum", "Ethereum", "ETH", 12, _EVM),
    "polygon": ChainConfig("polygon", "Polygon", "MATIC", 128, _EVM),
    "arbitrum": ChainConfig("arbitrum", "Arbitrum", "ETH", 20, _EVM),
    # UTXO networks
    "btc": ChainConfig(
        "btc", "Bitcoin", "BTC", 3,
        AddressRules(
            family=ChainFamily.UTXO,
            p2pkh_versions=(b"\x00",),
            p2sh_versions=(b"\x05",),
            hrp="bc",
        ),
    ),
    "ltc": ChainConfig(
        "ltc", "Litecoin", "LTC", 6,
        AddressRules(
            family=ChainFamily.UTXO,
            p2pkh_versions=(b"\x30",),
            p2sh_versions=(b"\x32", b"\x05"),
            hrp="ltc",
        ),
    ),
    "doge": ChainConfig(
        "doge", "Dogecoin", "DOGE", 40,
        AddressRules(
            family=ChainFamily.UTXO,
            p2pkh_versions=(b"\x1e",),
            p2sh_versions=(b"\x16",),
        ),
    ),
    # Account-model networks
    "sol": ChainConfig(
        "sol", "Solana", "SOL", 32,
        AddressRules(family=ChainFamily.ACCOUNT, scheme="sol"),
    ),
    "trx": ChainConfig(
        "trx", "TRON", "TRX", 20,
        AddressRules(family=ChainFamily.ACCOUNT, scheme="trx"),
    ),
    # Tag / memo ledgers
    "xrp": ChainConfig(
        "xrp", "XRP Ledger", "XRP", 1,
        AddressRules(family=ChainFamily.TAGGED, memo_kind=MemoKind.TAG),
    ),
    "xlm": ChainConfig(
        "xlm", "Stellar", "XLM", 1,
        AddressRules(family=ChainFamily.TAGGED, memo_kind=MemoKind.MEMO),
    ),
}

ASSETS: dict[str, AssetConfig] = {
    "BTC": AssetConfig("BTC", "Bitcoin", "btc", Decimal("0.0005"), Decimal("10"), "btc"),
    "ETH": AssetConfig("ETH", "Ethereum", "eth", Decimal("0.001"), Decimal("100"), "eth"),
    "BNB": AssetConfig("BNB", "BNB", "bsc", Decimal("0.02"), Decimal("1000"), "bsc"),
    "SOL": AssetConfig("SOL", "Solana", "sol", Decimal("0.1"), Decimal("5000"), "sol"),
    "TRX": AssetConfig("TRX", "TRON", "trx", Decimal("10"), Decimal("100000"), "trx"),
    "MATIC": AssetConfig("MATIC", "Polygon", "matic", Decimal("10"), Decimal("50000"), "matic"),
    "AVAX": AssetConfig("AVAX", "Avalanche", "avax", Decimal("0.5"), Decimal("1000"), "avax"),
    "ARB": AssetConfig("ARB", "Arbitrum", "arb", Decimal("0.01"), Decimal("100"), "arb"),
    "OP": AssetConfig("OP", "Optimism", "op", Decimal("0.01"), Decimal("100"), "op"),
    "LTC": AssetConfig("LTC", "Litecoin", "ltc", Decimal("0.01"), Decimal("1000"), "ltc"),
    "DOGE": AssetConfig("DOGE", "Dogecoin", "doge", Decimal("50"), Decimal("1000000"), "doge"),
    "XRP": AssetConfig("XRP", "XRP", "xrp", Decimal("10"), Decimal("100000"), "xrp"),
    "XLM": AssetConfig("XLM", "Stellar", "xlm", Decimal("10"), Decimal("100000"), "xlm"),
    "USDT": AssetConfig("USDT", "Tether USD", "eth", Decimal("10"), Decimal("100000"), "usdt"),
    "USDC": AssetConfig("USDC", "USD Coin", "eth", Decimal("10"), Decimal("100000"), "usdc"),
}

# Default fee schedule per fee key (used when the remote estimate fails)
FEE_SCHEDULES: dict[str, FeeSchedule] = {
    "btc": FeeSchedule(Decimal("0.0001")),
    "eth": FeeSchedule(Decimal("0.005")),
    "bsc": FeeSchedule(Decimal("0.001")),
    "sol": FeeSchedule(Decimal("0.01")),
    "trx": FeeSchedule(Decimal("1")),
    "matic": FeeSchedule(Decimal("1")),
    "avax": FeeSchedule(Decimal("0.01")),
    "arb": FeeSchedule(Decimal("0.001")),
    "op": FeeSchedule(Decimal("0.001")),
    "ltc": FeeSchedule(Decimal("0.001")),
    "doge": FeeSchedule(Decimal("5")),
    "xrp": FeeSchedule(Decimal("0.25")),
    "xlm": FeeSchedule(Decimal("0.1")),
    "usdt": FeeSchedule(Decimal("1")),
    "usdc": FeeSchedule(Decimal("1")),
}

DEFAULT_FEE_SCHEDULE = FeeSchedule(Decimal("0.001"))


def get_chain(chain_id: str) -> Optional[ChainConfig]:
    """Get chain config by id (case-insensitive)."""
    return CHAINS.get(chain_id.lower()) if chain_id else None


def get_address_rules(chain_id: str) -> Optional[AddressRules]:
    """Get the bundled address rules for a chain, None if unsupported."""
    chain = get_chain(chain_id)
    return chain.rules if chain else None


def get_asset(symbol: str) -> Optional[AssetConfig]:
    """Get asset config by symbol (case-insensitive)."""
    return ASSETS.get(symbol.upper()) if symbol else None


def get_fee_schedule(fee_key: str) -> FeeSchedule:
    """Get the default fee schedule, falling back to a generic one."""
    return FEE_SCHEDULES.get(fee_key.lower(), DEFAULT_FEE_SCHEDULE)


def get_supported_assets() -> list[str]:
    """Get list of withdrawable asset symbols."""
    return list(ASSETS.keys())
