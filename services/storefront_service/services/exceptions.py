"""Errors raised by the storefront orchestration core.

Precondition errors are raised before any network call and carry a
user-facing message plus the form ``field`` they concern. Backend and
transport failures keep their own type (``BackendRequestError``).
"""

from typing import Optional


class StorefrontError(Exception):
    """Base class for storefront core errors."""

    default_message = "Не удалось выполнить операцию."

    def __init__(self, message: Optional[str] = None, *, field: Optional[str] = None):
        self.message = message or self.default_message
        self.field = field
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Preconditions (local, no network call made)
# ---------------------------------------------------------------------------


class CheckoutPreconditionError(StorefrontError):
    pass


class EmptyCartError(CheckoutPreconditionError):
    default_message = "Корзина пуста. Добавьте товары перед оформлением заказа."


class InvalidQuantityError(CheckoutPreconditionError):
    default_message = "Количество должно быть не меньше 1."


class MissingContactEmailError(CheckoutPreconditionError):
    default_message = "Укажите email для чека и подтверждения заказа."


class MissingRecipientError(CheckoutPreconditionError):
    default_message = "Укажите имя и телефон получателя."


class MissingDestinationError(CheckoutPreconditionError):
    default_message = "Укажите адрес доставки или пункт выдачи."


class UnconfirmedPickupPointError(CheckoutPreconditionError):
    default_message = "Выберите пункт выдачи из списка: этот пункт не подтверждён службой доставки."


class OfferNotSelectedError(CheckoutPreconditionError):
    default_message = "Рассчитайте и выберите подходящий интервал доставки."


class OfferNotFoundError(CheckoutPreconditionError):
    default_message = "Этот вариант доставки больше недоступен. Рассчитайте доставку заново."


class OfferExpiredError(CheckoutPreconditionError):
    default_message = "Предложение доставки устарело. Рассчитайте доставку заново."


class InvalidStockAdjustmentError(CheckoutPreconditionError):
    default_message = "Укажите ненулевое изменение остатка."


class EmailDestinationRequiredError(CheckoutPreconditionError):
    default_message = "Укажите email клиента, чтобы отправить ссылку на заказ."


class PaymentNotAllowedError(CheckoutPreconditionError):
    default_message = "Заказ уже оплачен или закрыт."


class ReauthenticationRequiredError(CheckoutPreconditionError):
    default_message = "Сессия истекла. Войдите снова, чтобы продолжить."


class ReconcilerClosedError(CheckoutPreconditionError):
    default_message = "Отслеживание заказа остановлено."


# ---------------------------------------------------------------------------
# Backend outcomes
# ---------------------------------------------------------------------------


class CheckoutRejectedError(StorefrontError):
    """The backend refused the checkout with errors tied to form fields."""

    default_message = "Проверьте поля с ошибками и попробуйте снова."

    def __init__(self, field_errors: dict[str, str], message: Optional[str] = None):
        super().__init__(message)
        self.field_errors = field_errors


class CheckoutInProgressError(StorefrontError):
    default_message = (
        "Заказ с этим запросом уже обрабатывается. "
        "Подождите пару секунд и повторите попытку."
    )


class PaymentRedirectMissingError(StorefrontError):
    default_message = "Не удалось получить ссылку оплаты. Попробуйте ещё раз."


class ManagerLinkError(StorefrontError):
    default_message = "Не удалось создать ссылку на заказ."
