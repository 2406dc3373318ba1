"""Reward resolution and point arithmetic for carts."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Sequence

from loguru import logger

from settlement_api.core.settings import settings
from settlement_api.models.reward import Reward, RewardType
from settlement_api.models.transaction import TransactionType

from .exceptions import InvalidSettlementRequest

CENT = Decimal("0.01")
ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def round2(value: Decimal | int | float | str) -> Decimal:
    """Round half-up to two decimal places."""

    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, *, field_name: str = "value") -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidSettlementRequest(f"Invalid decimal for {field_name}: {value!r}") from exc


def _optional_decimal(value: Any, field_name: str) -> Decimal | None:
    if value is None or value == "":
        return None
    return to_decimal(value, field_name=field_name)


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def discount_fraction(discount_value: Decimal | int | float | str | None) -> Decimal:
    """Interpret a stored discount value as a fraction of the total.

    Values in (0, 1] are fractions, values in (1, 100] are percentages and
    anything larger is clamped to a full discount.
    """

    if discount_value is None:
        return ZERO
    value = to_decimal(discount_value, field_name="discount_value")
    if value <= ZERO:
        return ZERO
    if value <= ONE:
        return value
    if value <= HUNDRED:
        return value / HUNDRED
    return ONE


@dataclass(slots=True)
class CartItem:
    """Line of a cart prior to settlement.

    An item with ``points_cost`` is paid for with points and settles as a
    redemption line.
    """

    product_id: int | None
    quantity: int
    unit_price: Decimal
    product_name: str | None = None
    is_reward_line: bool = False
    points_cost: Decimal | None = None

    @property
    def is_redemption(self) -> bool:
        return self.points_cost is not None and not self.is_reward_line

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def validate(self) -> None:
        if self.quantity is None or self.quantity <= 0:
            raise InvalidSettlementRequest("Item quantity must be positive")
        if self.unit_price < ZERO:
            raise InvalidSettlementRequest("Item unit price must not be negative")
        if self.points_cost is not None and self.points_cost < ZERO:
            raise InvalidSettlementRequest("Item points cost must not be negative")

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "is_reward_line": self.is_reward_line,
            "points_cost": str(self.points_cost) if self.points_cost is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CartItem":
        try:
            quantity = int(data.get("quantity", 0))
        except (TypeError, ValueError) as exc:
            raise InvalidSettlementRequest("Item quantity must be an integer") from exc
        return cls(
            product_id=_optional_int(data.get("product_id")),
            product_name=data.get("product_name"),
            quantity=quantity,
            unit_price=to_decimal(data.get("unit_price", 0), field_name="unit_price"),
            is_reward_line=bool(data.get("is_reward_line", False)),
            points_cost=_optional_decimal(data.get("points_cost"), "points_cost"),
        )


@dataclass(slots=True)
class RewardDescriptor:
    """Snapshot of a reward attached to a cart."""

    reward_id: int | None
    reward_type: RewardType
    points_cost: Decimal = ZERO
    discount_value: Decimal | None = None
    free_item_product_id: int | None = None
    buy_x_product_id: int | None = None
    buy_x_quantity: int | None = None
    get_y_product_id: int | None = None
    get_y_quantity: int | None = None
    name: str | None = None

    @property
    def charges_points(self) -> bool:
        return self.reward_type != RewardType.DISCOUNT and self.points_cost > ZERO

    @classmethod
    def from_model(cls, reward: Reward) -> "RewardDescriptor":
        return cls(
            reward_id=reward.id,
            reward_type=RewardType(reward.reward_type),
            points_cost=to_decimal(reward.points_cost or 0),
            discount_value=_optional_decimal(reward.discount_value, "discount_value"),
            free_item_product_id=reward.free_item_product_id,
            buy_x_product_id=reward.buy_x_product_id,
            buy_x_quantity=reward.buy_x_quantity,
            get_y_product_id=reward.get_y_product_id,
            get_y_quantity=reward.get_y_quantity,
            name=reward.name,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "reward_id": self.reward_id,
            "reward_type": self.reward_type.value,
            "name": self.name,
            "points_cost": str(self.points_cost),
            "discount_value": str(self.discount_value) if self.discount_value is not None else None,
            "free_item_product_id": self.free_item_product_id,
            "buy_x_product_id": self.buy_x_product_id,
            "buy_x_quantity": self.buy_x_quantity,
            "get_y_product_id": self.get_y_product_id,
            "get_y_quantity": self.get_y_quantity,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RewardDescriptor":
        try:
            reward_type = RewardType(data.get("reward_type"))
        except ValueError as exc:
            raise InvalidSettlementRequest(f"Unknown reward type: {data.get('reward_type')!r}") from exc
        return cls(
            reward_id=_optional_int(data.get("reward_id")),
            reward_type=reward_type,
            points_cost=to_decimal(data.get("points_cost") or 0, field_name="points_cost"),
            discount_value=_optional_decimal(data.get("discount_value"), "discount_value"),
            free_item_product_id=_optional_int(data.get("free_item_product_id")),
            buy_x_product_id=_optional_int(data.get("buy_x_product_id")),
            buy_x_quantity=_optional_int(data.get("buy_x_quantity")),
            get_y_product_id=_optional_int(data.get("get_y_product_id")),
            get_y_quantity=_optional_int(data.get("get_y_quantity")),
            name=data.get("name"),
        )


@dataclass(slots=True)
class ResolvedLine:
    """Transaction line ready to be persisted."""

    transaction_type: TransactionType
    product_id: int | None
    quantity: int
    unit_price: Decimal
    points_delta: Decimal
    product_name: str | None = None
    is_reward_line: bool = False
    reward_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_type": self.transaction_type.value,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "points_delta": str(self.points_delta),
            "is_reward_line": self.is_reward_line,
            "reward_id": self.reward_id,
        }


@dataclass(slots=True)
class ResolvedCart:
    """Outcome of applying a reward to a cart."""

    items: list[CartItem]
    lines: list[ResolvedLine]
    base_total: Decimal
    total_amount: Decimal
    total_points: Decimal
    discount_fraction: Decimal = ZERO
    reward: RewardDescriptor | None = None
    reward_cost: Decimal = ZERO
    redemption_cost: Decimal = ZERO
    notes: list[str] = field(default_factory=list)

    @property
    def points_required(self) -> Decimal:
        """Points the customer must already hold for this cart to settle."""

        return self.reward_cost + self.redemption_cost

    @property
    def net_points(self) -> Decimal:
        net, _ = summarize_lines((line.transaction_type, line.points_delta) for line in self.lines)
        return net

    @property
    def redeemed_points(self) -> Decimal:
        _, redeemed = summarize_lines((line.transaction_type, line.points_delta) for line in self.lines)
        return redeemed


def summarize_lines(rows: Iterable[tuple[TransactionType | str, Decimal]]) -> tuple[Decimal, Decimal]:
    """Return ``(net_delta, redeemed)`` for ``(transaction_type, points_delta)`` pairs.

    Purchase and reward deltas are signed and add directly. Redemptions
    subtract their magnitude. Every point spent, whether by a redemption or a
    negative reward charge, counts toward ``redeemed``.
    """

    net = ZERO
    redeemed = ZERO
    for raw_type, raw_delta in rows:
        kind = TransactionType(raw_type)
        delta = to_decimal(raw_delta or 0)
        if kind == TransactionType.REDEMPTION:
            net -= abs(delta)
            redeemed += abs(delta)
            continue
        net += delta
        if kind == TransactionType.REWARD and delta < ZERO:
            redeemed += -delta
    return round2(net), round2(redeemed)


def _absorb_drift(lines: Sequence[ResolvedLine], drift: Decimal) -> None:
    """Spread per-line rounding drift a cent at a time, largest earners first.

    No line is pushed below zero, so every purchase delta stays non-negative.
    """

    step = CENT if drift > ZERO else -CENT
    remaining = round2(drift)
    ordered = sorted(lines, key=lambda line: line.points_delta, reverse=True)
    while remaining != ZERO:
        moved = False
        for line in ordered:
            if remaining == ZERO:
                break
            if line.points_delta + step < ZERO:
                continue
            line.points_delta += step
            remaining -= step
            moved = True
        if not moved:
            break


class RewardResolver:
    """Apply reward mechanics to a cart and derive point deltas."""

    def __init__(self, *, earn_rate: Decimal | float | None = None) -> None:
        rate = settings.points_earn_rate if earn_rate is None else earn_rate
        self._earn_rate = to_decimal(rate, field_name="earn_rate")

    @property
    def earn_rate(self) -> Decimal:
        return self._earn_rate

    def earned_points(self, amount: Decimal) -> Decimal:
        return round2(to_decimal(amount) * self._earn_rate)

    def resolve(self, items: Sequence[CartItem], reward: RewardDescriptor | None = None) -> ResolvedCart:
        base_items = [item for item in items if not item.is_reward_line]
        if not base_items:
            raise InvalidSettlementRequest("Cart must contain at least one item")
        for item in base_items:
            item.validate()

        purchases = [item for item in base_items if not item.is_redemption]
        redemptions = [item for item in base_items if item.is_redemption]

        base_total = round2(sum((item.line_total for item in purchases), ZERO))
        fraction = ZERO
        if reward is not None and reward.reward_type == RewardType.DISCOUNT:
            fraction = discount_fraction(reward.discount_value)
        total_amount = round2(base_total * (ONE - fraction))
        total_points = self.earned_points(total_amount)

        adjusted: list[CartItem] = list(base_items)
        bonus_lines: list[CartItem] = []
        notes: list[str] = []
        if reward is not None:
            bonus_lines = self._bonus_items(reward, base_items, notes)
            adjusted.extend(bonus_lines)

        lines: list[ResolvedLine] = []
        purchase_lines: list[ResolvedLine] = []
        for item in purchases:
            discounted_unit = round2(item.unit_price * (ONE - fraction))
            line = ResolvedLine(
                transaction_type=TransactionType.PURCHASE,
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=discounted_unit,
                points_delta=self.earned_points(discounted_unit * item.quantity),
                reward_id=reward.reward_id if reward is not None else None,
            )
            lines.append(line)
            purchase_lines.append(line)
        if purchase_lines:
            _absorb_drift(purchase_lines, total_points - sum((line.points_delta for line in purchase_lines), ZERO))

        redemption_cost = ZERO
        for item in redemptions:
            cost = round2(item.points_cost or ZERO)
            redemption_cost += cost
            lines.append(
                ResolvedLine(
                    transaction_type=TransactionType.REDEMPTION,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price=round2(item.unit_price),
                    points_delta=-cost,
                )
            )

        for item in bonus_lines:
            lines.append(
                ResolvedLine(
                    transaction_type=TransactionType.REWARD,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price=ZERO,
                    points_delta=ZERO,
                    is_reward_line=True,
                    reward_id=reward.reward_id if reward is not None else None,
                )
            )

        reward_cost = ZERO
        if reward is not None and reward.charges_points and (
            reward.reward_type == RewardType.FREE_ITEM or bonus_lines
        ):
            reward_cost = round2(reward.points_cost)
            lines.append(
                ResolvedLine(
                    transaction_type=TransactionType.REWARD,
                    product_id=self._reward_product(reward),
                    quantity=1,
                    unit_price=ZERO,
                    points_delta=-reward_cost,
                    is_reward_line=True,
                    reward_id=reward.reward_id,
                )
            )

        logger.debug(
            "Resolved cart",
            reward_id=reward.reward_id if reward is not None else None,
            base_total=str(base_total),
            total_amount=str(total_amount),
            total_points=str(total_points),
            line_count=len(lines),
        )
        return ResolvedCart(
            items=adjusted,
            lines=lines,
            base_total=base_total,
            total_amount=total_amount,
            total_points=total_points,
            discount_fraction=fraction,
            reward=reward,
            reward_cost=reward_cost,
            redemption_cost=round2(redemption_cost),
            notes=notes,
        )

    def _bonus_items(
        self,
        reward: RewardDescriptor,
        items: Sequence[CartItem],
        notes: list[str],
    ) -> list[CartItem]:
        if reward.reward_type == RewardType.FREE_ITEM:
            if reward.free_item_product_id is None:
                notes.append("free_item reward has no product")
                return []
            return [
                CartItem(
                    product_id=reward.free_item_product_id,
                    quantity=1,
                    unit_price=ZERO,
                    is_reward_line=True,
                )
            ]

        if reward.reward_type == RewardType.BUY_X_GET_Y:
            buy_quantity = reward.buy_x_quantity if reward.buy_x_quantity and reward.buy_x_quantity > 0 else 1
            get_quantity = reward.get_y_quantity if reward.get_y_quantity and reward.get_y_quantity > 0 else 1
            available = sum(
                item.quantity
                for item in items
                if item.product_id == reward.buy_x_product_id and not item.is_redemption
            )
            multiplier = available // buy_quantity
            if multiplier <= 0:
                notes.append("buy_x_get_y reward not triggered")
                return []
            return [
                CartItem(
                    product_id=reward.get_y_product_id,
                    quantity=multiplier * get_quantity,
                    unit_price=ZERO,
                    is_reward_line=True,
                )
            ]

        return []

    @staticmethod
    def _reward_product(reward: RewardDescriptor) -> int | None:
        if reward.reward_type == RewardType.FREE_ITEM:
            return reward.free_item_product_id
        if reward.reward_type == RewardType.BUY_X_GET_Y:
            return reward.get_y_product_id
        return None


__all__ = [
    "CartItem",
    "ResolvedCart",
    "ResolvedLine",
    "RewardDescriptor",
    "RewardResolver",
    "discount_fraction",
    "round2",
    "to_decimal",
    "summarize_lines",
]
