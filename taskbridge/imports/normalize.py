"""
Normalization of return-report rows into CRM deal fields.

Source files come from several marketplace exports, so each target field
lists the header variants it may appear under. XML exports replace spaces
and accents with underscores in tag names.
"""

import math
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, Optional

import numpy as np
import pandas as pd

from taskbridge.crm.fields import DealPayload

# Target field -> header variants, first match wins
HEADER_VARIANTS = {
    "order_id": ["Nº de Pedido da Plataforma", "N_de_Pedido_da_Plataforma", "Nº do Pedido", "Pedido"],
    "return_date": ["Tempo de Devolução", "Tempo_de_Devolucao", "Data da coleta", "Data_da_coleta"],
    "amount": ["Quantia de Reembolso", "Quantia_de_Reembolso"],
    "marketplace": ["Plataforma", "Marketplace"],
    "store_name": ["Loja", "Nome da Loja", "Nome_da_Loja"],
    "tracking_number": ["Nº de Rastreio", "N_de_Rastreio"],
    "return_id": ["Pedidos de devolução", "ID da devolução", "Pedidos_de_devolucao"],
    "return_reason": ["Devolução/Razão de Reembolso", "Motivo do Reembolso", "Motivo_do_Reembolso"],
    "return_type": ["Tipo de Devolução", "Tipo_de_Devolucao"],
    "platform_status": ["Status na Plataforma", "Status_na_Plataforma"],
    "product_sku": ["Produtos/SKU de Variante", "SKU", "SKU_de_Variante"],
    "ad_title": ["Título", "Título do anúncio", "Titulo"],
    "ad_id": ["ID do Anúncios", "ID_do_Anuncios"],
    "quantity": ["Qtd.", "Quantidade", "Qtd"],
    "shipping_method": ["Envio", "Forma de Envio", "Forma_de_Envio"],
    "real_reason": ["Observação", "Motivo Real da Devolução", "Observacao"],
}

# Controlled vocabularies: exact case-insensitive match, unknown values pass through
MARKETPLACES = ["Mercado Livre", "Shopee", "Amazon", "Magalu", "Americanas", "Shein", "TikTok Shop"]
RETURN_TYPES = ["Devolução", "Reembolso", "Troca", "Cancelamento"]
SHIPPING_METHODS = ["Full", "Flex", "Coleta", "Correios", "Agência"]

VOCABULARIES = {
    "marketplace": MARKETPLACES,
    "return_type": RETURN_TYPES,
    "shipping_method": SHIPPING_METHODS,
}

# Excel serial day 0
EXCEL_EPOCH = datetime(1899, 12, 30)

_BR_DATE = re.compile(
    r"^\s*(\d{1,2})/(\d{1,2})/(\d{2,4})(?:[\sT]+(\d{1,2}):(\d{2})(?::(\d{2}))?)?\s*$"
)


def _is_missing(value) -> bool:
    if value is None or value is pd.NaT:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def get_value(row: Dict[str, Any], keys: Iterable[str], default=None):
    """First non-missing value among the header variants."""
    for key in keys:
        if key in row and not _is_missing(row[key]):
            return row[key]
    return default


def clean_text(value) -> str:
    if _is_missing(value):
        return ""
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value).strip()


def order_id_of(row: Dict[str, Any]) -> str:
    """Natural key of a row: the platform order number, trimmed; "" if absent."""
    return clean_text(get_value(row, HEADER_VARIANTS["order_id"]))


def parse_money(value) -> float:
    """
    Parse a currency amount.

    Accepts numbers and strings in either convention ("R$ 1.234,56",
    "1,234.56", "12,5", "12.50"). The right-most separator is the decimal
    one; a lone dot is a decimal point. Unparsable input is 0.0.
    """
    if _is_missing(value):
        return 0.0
    if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
        value = float(value)
        return 0.0 if math.isnan(value) else value

    text = re.sub(r"[^\d,.\-]", "", str(value))
    if not text:
        return 0.0
    last_comma, last_dot = text.rfind(","), text.rfind(".")
    if last_comma > last_dot:
        text = text.replace(".", "").replace(",", ".")
    elif last_dot > last_comma and last_comma != -1:
        text = text.replace(",", "")
    elif text.count(".") > 1:
        text = text.replace(".", "")
    try:
        return float(text)
    except ValueError:
        return 0.0


def parse_date(value, now: Optional[datetime] = None) -> datetime:
    """
    Parse a report date into a naive datetime.

    Handles Excel serial numbers, ISO-8601 strings, pandas/python datetimes
    and "dd/mm/yyyy [HH:MM]" (12:00 when no time is given). Anything else
    becomes `now`.
    """
    now = now or datetime.now()
    if _is_missing(value):
        return now
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime().replace(tzinfo=None)
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, 12, 0)
    if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
        try:
            return EXCEL_EPOCH + timedelta(days=float(value))
        except (OverflowError, ValueError):
            return now

    text = str(value).strip()
    match = _BR_DATE.match(text)
    if match:
        day, month, year, hour, minute, second = match.groups()
        year = int(year)
        if year < 100:
            year += 2000
        try:
            return datetime(
                year, int(month), int(day),
                int(hour) if hour is not None else 12,
                int(minute) if minute is not None else 0,
                int(second) if second is not None else 0,
            )
        except ValueError:
            return now
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return now
    return parsed.replace(tzinfo=None)


def parse_quantity(value) -> int:
    """Integer quantity; missing, unparsable or non-positive values become 1."""
    if _is_missing(value):
        return 1
    try:
        quantity = int(float(str(value).strip().replace(",", ".")))
    except (TypeError, ValueError):
        return 1
    return quantity if quantity > 0 else 1


def map_vocabulary(value: str, vocabulary: Iterable[str]) -> str:
    lowered = value.strip().lower()
    for term in vocabulary:
        if term.lower() == lowered:
            return term
    return value


def normalize_row(row: Dict[str, Any], currency: str = "BRL", assigned_by_id: int = 1,
                  deadline_days: int = 15, now: Optional[datetime] = None) -> DealPayload:
    """Turn one report row into the deal payload created in the CRM."""
    order_id = order_id_of(row)
    return_date = parse_date(get_value(row, HEADER_VARIANTS["return_date"]), now=now)
    close_date = return_date + timedelta(days=deadline_days)

    def text(field_name):
        value = clean_text(get_value(row, HEADER_VARIANTS[field_name]))
        if value and field_name in VOCABULARIES:
            value = map_vocabulary(value, VOCABULARIES[field_name])
        return value

    fields = {
        "title": order_id,
        "amount": parse_money(get_value(row, HEADER_VARIANTS["amount"])),
        "currency": currency,
        "close_date": close_date.isoformat(),
        "opened": "Y",
        "assigned_by_id": assigned_by_id,
        "marketplace": text("marketplace"),
        "store_name": text("store_name"),
        "tracking_number": text("tracking_number"),
        "return_id": text("return_id"),
        "return_reason": text("return_reason"),
        "return_type": text("return_type"),
        "platform_status": text("platform_status"),
        "product_sku": text("product_sku"),
        "ad_title": text("ad_title"),
        "ad_id": text("ad_id"),
        "collection_date": return_date.isoformat(),
        "quantity": parse_quantity(get_value(row, HEADER_VARIANTS["quantity"])),
        "shipping_method": text("shipping_method"),
        "real_reason": text("real_reason"),
    }
    return DealPayload(order_id=order_id, fields=fields)
