from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.domain.errors import IntegrationFault, ValidationFault


def _require(payload: dict[str, Any], key: str, what: str) -> Any:
    if not isinstance(payload, dict) or payload.get(key) is None:
        raise IntegrationFault(f"{what} payload is missing '{key}'")
    return payload[key]


def _as_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ----- Session -----


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    MFA_REQUIRED = "mfa_required"
    INVALID = "invalid"
    FAILED = "failed"
    CLOSED = "closed"


class AuthStatus(Enum):
    SUCCESS = "success"
    MFA_REQUIRED = "mfa_required"
    INVALID = "invalid"
    ERROR = "error"


@dataclass(frozen=True)
class Credential:
    """
    Access/refresh token pair plus expiry bookkeeping.

    Instances are immutable: renewal builds a new Credential and swaps it in as a whole,
    so a reader can never pair a new access token with an old expiry.
    A credential built from a bare access token has no refresh token and no expiry.
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    issued_at: float = 0.0

    @property
    def expires_at(self) -> float | None:
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in

    def time_left(self, now: float) -> float | None:
        """Seconds until hard expiry, or None when the expiry is unknown."""
        expires_at = self.expires_at
        if expires_at is None:
            return None
        return expires_at - now

    @classmethod
    def from_token_payload(cls, payload: dict[str, Any], issued_at: float) -> "Credential":
        try:
            expires_in = int(_require(payload, "expires_in", "token"))
        except (TypeError, ValueError) as exc:
            raise IntegrationFault(f"token payload has a non-numeric expires_in: {payload.get('expires_in')!r}") from exc
        return cls(
            access_token=str(_require(payload, "access_token", "token")),
            refresh_token=str(_require(payload, "refresh_token", "token")),
            expires_in=expires_in,
            issued_at=float(issued_at),
        )


@dataclass(frozen=True)
class AuthOutcome:
    status: AuthStatus
    credential: Credential | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is AuthStatus.SUCCESS

    @classmethod
    def success(cls, credential: Credential) -> "AuthOutcome":
        return cls(AuthStatus.SUCCESS, credential=credential)

    @classmethod
    def mfa_required(cls) -> "AuthOutcome":
        return cls(AuthStatus.MFA_REQUIRED)

    @classmethod
    def invalid(cls) -> "AuthOutcome":
        return cls(AuthStatus.INVALID)

    @classmethod
    def error(cls, detail: str) -> "AuthOutcome":
        return cls(AuthStatus.ERROR, detail=detail)


# ----- Transport -----


@dataclass(frozen=True)
class RawResponse:
    status: int
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON, raising IntegrationFault when it is not JSON."""
        try:
            return json.loads(self.body or b"null")
        except ValueError as exc:
            raise IntegrationFault(
                f"Response body is not valid JSON (HTTP {self.status})",
                status=self.status,
                body=self.text[:500],
            ) from exc


@dataclass(frozen=True)
class ApiResult:
    """Outcome of a JSON request: either a payload or the fault that prevented one."""

    status: int
    payload: Any = None
    fault: IntegrationFault | None = None

    @property
    def ok(self) -> bool:
        return self.fault is None

    def unwrap(self) -> Any:
        if self.fault is not None:
            raise self.fault
        return self.payload


@dataclass(frozen=True)
class Page:
    results: list[dict[str, Any]]
    next: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "Page":
        if not isinstance(payload, dict):
            raise IntegrationFault(f"Listing payload must be an object; got {type(payload).__name__}")
        results = payload.get("results")
        if results is None:
            results = []
        if not isinstance(results, list):
            raise IntegrationFault(f"Listing 'results' must be an array; got {type(results).__name__}")
        next_url = payload.get("next") or None
        return cls(results=list(results), next=next_url)


# ----- Orders -----


class OrderKind(Enum):
    EQUITY = "equity"
    OPTION = "option"

    @classmethod
    def parse(cls, value: "OrderKind | str") -> "OrderKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValidationFault(f"Unsupported order kind: {value!r}") from exc


ORDER_SIDES = frozenset({"buy", "sell"})


@dataclass(frozen=True)
class OrderFilters:
    days: int | None = None
    symbol: str | None = None
    last: int | None = None

    @classmethod
    def build(cls, days: Any = None, symbol: str | None = None, last: Any = None) -> "OrderFilters":
        return cls(
            days=_non_negative_int(days, name="days"),
            symbol=symbol.strip().upper() if symbol and symbol.strip() else None,
            last=_non_negative_int(last, name="last"),
        )


def _non_negative_int(value: Any, *, name: str) -> int | None:
    if value is None:
        return None
    try:
        out = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationFault(f"{name} must be an integer; got {value!r}") from exc
    if out < 0:
        raise ValidationFault(f"{name} must be >= 0")
    return out


@dataclass(frozen=True)
class Order:
    id: str
    symbol: str | None
    side: str
    quantity: float | None
    price: float | None
    state: str
    type: str
    instrument: str | None = None
    cancel_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def cancellable(self) -> bool:
        return bool(self.cancel_url)

    @classmethod
    def from_payload(cls, payload: dict[str, Any], symbol: str | None = None) -> "Order":
        return cls(
            id=str(_require(payload, "id", "order")),
            symbol=symbol,
            side=str(payload.get("side") or ""),
            quantity=_as_float(payload.get("quantity")),
            price=_as_float(payload.get("price")),
            state=str(payload.get("state") or ""),
            type=str(payload.get("type") or ""),
            instrument=payload.get("instrument"),
            cancel_url=payload.get("cancel"),
            created_at=payload.get("created_at"),
            updated_at=payload.get("updated_at"),
            raw=dict(payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side,
            "quantity": self.quantity,
            "price": self.price,
            "state": self.state,
            "type": self.type,
            "instrument": self.instrument,
            "cancellable": self.cancellable,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class OptionLeg:
    side: str
    option: str
    position_effect: str
    ratio_quantity: int = 1

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "OptionLeg":
        return cls(
            side=str(payload.get("side") or ""),
            option=str(_require(payload, "option", "option leg")),
            position_effect=str(payload.get("position_effect") or ""),
            ratio_quantity=int(_as_float(payload.get("ratio_quantity")) or 1),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "side": self.side,
            "option": self.option,
            "position_effect": self.position_effect,
            "ratio_quantity": str(self.ratio_quantity),
        }


@dataclass(frozen=True)
class OptionOrder:
    id: str
    chain_symbol: str
    legs: tuple[OptionLeg, ...]
    price: float | None
    quantity: float | None
    state: str
    direction: str | None = None
    opening_strategy: str | None = None
    closing_strategy: str | None = None
    cancel_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def cancellable(self) -> bool:
        return bool(self.cancel_url)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "OptionOrder":
        legs = payload.get("legs") or []
        return cls(
            id=str(_require(payload, "id", "option order")),
            chain_symbol=str(payload.get("chain_symbol") or ""),
            legs=tuple(OptionLeg.from_payload(leg) for leg in legs),
            price=_as_float(payload.get("price")),
            quantity=_as_float(payload.get("quantity")),
            state=str(payload.get("state") or ""),
            direction=payload.get("direction"),
            opening_strategy=payload.get("opening_strategy"),
            closing_strategy=payload.get("closing_strategy"),
            cancel_url=payload.get("cancel_url"),
            created_at=payload.get("created_at"),
            updated_at=payload.get("updated_at"),
            raw=dict(payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "chain_symbol": self.chain_symbol,
            "legs": [leg.to_payload() for leg in self.legs],
            "price": self.price,
            "quantity": self.quantity,
            "state": self.state,
            "direction": self.direction,
            "opening_strategy": self.opening_strategy,
            "closing_strategy": self.closing_strategy,
            "cancellable": self.cancellable,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
