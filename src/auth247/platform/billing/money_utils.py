"""
Currency arithmetic for invoices.

Amounts are ``moneyed.Money`` over ``Decimal``. Charges are rounded half-up
to the currency's minor unit (two places for USD, none for JPY) as reported
by Babel, and rendered with Babel's locale data.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from babel import Locale
from babel.core import UnknownLocaleError
from babel.numbers import format_currency, get_currency_precision
from moneyed import Currency, Money, get_currency
from moneyed.classes import CurrencyDoesNotExist

from auth247.platform.settings import settings

FALLBACK_LOCALE = "en_US"

Amount = int | float | Decimal | str


def _to_decimal(value: Amount) -> Decimal:
    # str() first so 0.1 stays 0.1 rather than its binary expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


class MoneyHandler:
    """Money construction, rounding and display for one default currency/locale."""

    def __init__(self, default_currency: str = "USD", default_locale: str = FALLBACK_LOCALE) -> None:
        self.default_currency = self._currency(default_currency)
        self.default_locale = self._locale(default_locale)

    @staticmethod
    def _currency(code: str) -> Currency:
        try:
            return get_currency(code.upper())
        except CurrencyDoesNotExist as e:
            raise ValueError(f"Unknown currency {code!r}") from e

    @staticmethod
    def _locale(code: str) -> str:
        try:
            Locale.parse(code)
        except (UnknownLocaleError, ValueError):
            return FALLBACK_LOCALE
        return code

    def create_money(self, amount: Amount, currency: str | None = None) -> Money:
        code = currency or self.default_currency.code
        return Money(amount=_to_decimal(amount), currency=self._currency(code))

    def format_money(self, money: Money, locale: str | None = None, **kwargs: Any) -> str:
        """Render ``money`` for humans, e.g. ``$222.50`` in en_US."""
        try:
            return format_currency(
                money.amount,
                money.currency.code,
                locale=self._locale(locale or self.default_locale),
                **kwargs,
            )
        except (TypeError, ValueError):
            return f"{money.currency.code} {money.amount}"

    def minor_unit_places(self, currency_code: str) -> int:
        return int(get_currency_precision(currency_code.upper()))

    def round_money(self, money: Money) -> Money:
        quantum = Decimal(1).scaleb(-self.minor_unit_places(money.currency.code))
        return Money(
            amount=money.amount.quantize(quantum, rounding=ROUND_HALF_UP),
            currency=money.currency,
        )

    def multiply_money(self, money: Money, factor: Amount) -> Money:
        return money * _to_decimal(factor)

    def per_user_charge(
        self, user_count: int, price_per_user: Decimal, currency: str | None = None
    ) -> Money:
        """Charge for ``user_count`` billable users, rounded to the minor unit."""
        return self.round_money(
            self.multiply_money(self.create_money(price_per_user, currency), user_count)
        )

    def to_dict(self, money: Money) -> dict[str, Any]:
        return {
            "amount": str(money.amount),
            "currency": money.currency.code,
            "formatted": self.format_money(money),
        }


money_handler = MoneyHandler(
    default_currency=settings.billing.default_currency,
    default_locale=settings.billing.default_locale,
)


def create_money(amount: Amount, currency: str | None = None) -> Money:
    return money_handler.create_money(amount, currency)


def format_money(money: Money, locale: str | None = None, **kwargs: Any) -> str:
    return money_handler.format_money(money, locale, **kwargs)


def calculate_billing_amount(
    user_count: int, price_per_user: Decimal, currency: str | None = None
) -> Decimal:
    """``user_count * price_per_user`` rounded half-up, as a plain Decimal."""
    return money_handler.per_user_charge(user_count, price_per_user, currency).amount


__all__ = [
    "MoneyHandler",
    "money_handler",
    "create_money",
    "format_money",
    "calculate_billing_amount",
]
