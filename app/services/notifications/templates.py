"""
Template rendering for outbound messages.

Templates use ``{{token}}`` placeholders. Tokens are matched case-insensitively
and may carry inner whitespace (``{{ Guest_Name }}``); legacy Portuguese token
names map onto the same values. Unknown tokens are left untouched so a typo in
a template is visible in the delivered text instead of silently vanishing.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from app.models.domain.notification_domain import CheckoutItem

TOKEN_PATTERN = re.compile(r"\{\{\s*([^{}\s]+)\s*\}\}")

# Legacy token names still found in older account templates
TOKEN_ALIASES = {
    "nome_hospede": "guest_name",
    "hospede": "guest_name",
    "nome_imovel": "property_name",
    "imovel": "property_name",
    "data_checkin": "checkin_date",
    "data_checkout": "checkout_date",
    "horario_checkin": "checkin_time",
    "horario_checkout": "checkout_time",
    "nome_wifi": "wifi_name",
    "senha_wifi": "wifi_password",
    "instrucoes_acesso": "access_instructions",
    "nome_funcionario": "employee_name",
    "funcionario": "employee_name",
    "valor_total": "total_amount",
    "adultos": "adults",
    "criancas": "children",
    "lista_checkouts": "checkout_list",
    "quantidade_checkouts": "checkout_count",
    "id_reserva": "reservation_id",
}


def format_date(value: date | datetime | str | None) -> str:
    """dd/mm/YYYY, the way hosts read dates."""
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        return value
    return value.strftime("%d/%m/%Y")


def format_currency(amount: Decimal | float | int | str | None) -> str:
    """Brazilian real: ``R$ 1.234,56``."""
    if amount is None or amount == "":
        return ""
    value = Decimal(str(amount))
    formatted = f"{value:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"R$ {formatted}"


def format_checkout_list(items: Iterable[CheckoutItem]) -> str:
    return "\n".join(f"• {item.property_name} às {item.checkout_time}" for item in items)


@dataclass(slots=True)
class TemplateContext:
    """Values available to a template. Missing values render as empty strings."""

    guest_name: str | None = None
    property_name: str | None = None
    checkin_date: date | datetime | str | None = None
    checkout_date: date | datetime | str | None = None
    checkin_time: str | None = None
    checkout_time: str | None = None
    wifi_name: str | None = None
    wifi_password: str | None = None
    access_instructions: str | None = None
    employee_name: str | None = None
    total_amount: Decimal | float | str | None = None
    reservation_id: str | None = None
    adults: int | str | None = None
    children: int | str | None = None
    checkout_list: str | None = None
    checkout_count: int | None = None

    def values(self) -> dict[str, str]:
        raw = asdict(self)
        rendered = {key: "" if value is None else str(value) for key, value in raw.items()}
        rendered["checkin_date"] = format_date(self.checkin_date)
        rendered["checkout_date"] = format_date(self.checkout_date)
        rendered["total_amount"] = format_currency(self.total_amount)
        rendered["adults"] = str(self.adults) if self.adults is not None else "1"
        rendered["children"] = str(self.children) if self.children is not None else "0"
        return rendered


def render_template(template: str, context: TemplateContext | Mapping[str, Any]) -> str:
    """
    Substitute ``{{token}}`` placeholders in a template.

    Args:
        template: Template text
        context: TemplateContext, or a mapping of its field names

    Returns:
        Rendered text
    """
    if isinstance(context, Mapping):
        context = TemplateContext(**context)
    values = context.values()

    def replace(match: re.Match) -> str:
        name = match.group(1).lower()
        name = TOKEN_ALIASES.get(name, name)
        if name not in values:
            return match.group(0)
        return values[name]

    return TOKEN_PATTERN.sub(replace, template)


def default_cleaning_message(employee_name: str, items: list[CheckoutItem]) -> str:
    if len(items) == 1:
        item = items[0]
        return (
            f"Olá {employee_name}! Hoje tem limpeza no {item.property_name} "
            f"às {item.checkout_time}. Bom trabalho!"
        )

    return (
        f"Olá {employee_name}! Hoje você tem {len(items)} limpezas:\n\n"
        f"{format_checkout_list(items)}\n\nBom trabalho!"
    )


def default_checkin_reminder(context: TemplateContext) -> str:
    access = (
        f"Instruções de acesso:\n{context.access_instructions}\n\n"
        if context.access_instructions
        else ""
    )
    return (
        f"Olá {context.guest_name or ''}!\n\n"
        f"Lembrando que seu check-in no {context.property_name} é amanhã às {context.checkin_time}!\n\n"
        f"{access}Boa viagem!"
    )


def default_checkout_reminder(context: TemplateContext) -> str:
    return (
        f"Olá {context.guest_name or ''}!\n\n"
        f"Lembrando que seu checkout do {context.property_name} é amanhã às {context.checkout_time}.\n\n"
        "Por favor, lembre-se de:\n"
        "• Verificar se não esqueceu nada\n"
        "• Deixar as chaves no local indicado\n"
        "• Fechar janelas e portas\n\n"
        "Esperamos que tenha tido uma ótima estadia!"
    )


def default_review_request(context: TemplateContext) -> str:
    return (
        f"Olá {context.guest_name or ''}!\n\n"
        f"Esperamos que tenha curtido sua estadia no {context.property_name}!\n\n"
        "Se puder, deixe uma avaliação. Sua opinião é muito importante para nós!\n\n"
        "Obrigado e até a próxima!"
    )
