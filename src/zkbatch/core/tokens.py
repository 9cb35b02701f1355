"""
Token metadata.

Resolves symbols, ids and addresses to token records and renders
minor-unit amounts for human-readable signing messages.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Union

TokenLike = Union[str, int]


@dataclass(frozen=True)
class Token:
    """A token known to the rollup."""
    id: int
    symbol: str
    decimals: int
    address: str = "0x0000000000000000000000000000000000000000"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "address": self.address,
        }


def format_units(value: int, decimals: int) -> str:
    """
    Render an integer amount of minor units as a decimal string.

    Always keeps at least one fractional digit, so one whole ETH renders
    as "1.0" and zero as "0.0".
    """
    if value < 0:
        raise ValueError(f"Cannot format negative amount: {value}")
    whole, frac = divmod(value, 10 ** decimals)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0") if decimals else ""
    return f"{whole}.{frac_str or '0'}"


class TokenSet:
    """
    Lookup table of tokens by symbol, id and address.

    Stands in for the rollup's token metadata service. Symbols and
    addresses match case-insensitively.
    """

    def __init__(self, tokens: Iterable[Token] = ()):
        self._by_id: Dict[int, Token] = {}
        self._by_symbol: Dict[str, Token] = {}
        self._by_address: Dict[str, Token] = {}
        for token in tokens:
            self.add(token)

    def add(self, token: Token) -> None:
        self._by_id[token.id] = token
        self._by_symbol[token.symbol.lower()] = token
        self._by_address[token.address.lower()] = token

    def resolve(self, token_like: TokenLike) -> Token:
        """
        Resolve a symbol, numeric id or token address.

        Raises:
            ValueError: If the token is unknown
        """
        if isinstance(token_like, Token):
            return token_like
        if isinstance(token_like, int):
            token = self._by_id.get(token_like)
        elif token_like.lower().startswith("0x"):
            token = self._by_address.get(token_like.lower())
        else:
            token = self._by_symbol.get(token_like.lower())
        if token is None:
            raise ValueError(f"Unknown token: {token_like}")
        return token

    def resolve_token_id(self, token_like: TokenLike) -> int:
        return self.resolve(token_like).id

    def resolve_token_symbol(self, token_like: TokenLike) -> str:
        return self.resolve(token_like).symbol

    def format_token(self, token_like: TokenLike, amount: int) -> str:
        """Format a minor-unit amount using the token's decimals."""
        return format_units(amount, self.resolve(token_like).decimals)

    @property
    def tokens(self) -> List[Token]:
        return sorted(self._by_id.values(), key=lambda t: t.id)

    def __contains__(self, token_like: TokenLike) -> bool:
        try:
            self.resolve(token_like)
        except ValueError:
            return False
        return True

    def __len__(self) -> int:
        return len(self._by_id)

    @classmethod
    def from_dict(cls, data: dict) -> "TokenSet":
        """
        Build from the `tokens` JSON-RPC response shape.

        The response maps symbols to `{id, symbol, decimals, address}` records.
        """
        return cls(
            Token(
                id=int(item["id"]),
                symbol=item.get("symbol", symbol),
                decimals=int(item["decimals"]),
                address=item.get("address", Token.address),
            )
            for symbol, item in data.items()
        )
