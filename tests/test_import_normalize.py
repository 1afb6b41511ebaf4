"""
Tests for return-report normalization: header variants, money, dates,
quantities and controlled vocabularies.
"""
from datetime import datetime

import numpy as np
import pandas as pd
import pytest

from taskbridge.imports.normalize import (
    map_vocabulary,
    MARKETPLACES,
    normalize_row,
    order_id_of,
    parse_date,
    parse_money,
    parse_quantity,
)

NOW = datetime(2024, 6, 10, 8, 0)


@pytest.mark.parametrize("raw, expected", [
    ("R$ 1.234,56", 1234.56),
    ("1,234.56", 1234.56),
    ("12,5", 12.5),
    ("12.50", 12.5),
    ("1.234.567", 1234567.0),
    (89.9, 89.9),
    (np.float64(10.0), 10.0),
    ("", 0.0),
    (None, 0.0),
    ("abc", 0.0),
    (float("nan"), 0.0),
])
def test_parse_money(raw, expected):
    assert parse_money(raw) == pytest.approx(expected)


def test_parse_date_brazilian_with_default_noon():
    assert parse_date("05/06/2024", now=NOW) == datetime(2024, 6, 5, 12, 0)


def test_parse_date_brazilian_with_time():
    assert parse_date("05/06/2024 14:30", now=NOW) == datetime(2024, 6, 5, 14, 30)


def test_parse_date_iso():
    assert parse_date("2024-06-05T14:30:00Z", now=NOW) == datetime(2024, 6, 5, 14, 30)


def test_parse_date_excel_serial():
    assert parse_date(45448, now=NOW) == datetime(2024, 6, 5)


def test_parse_date_pandas_timestamp():
    assert parse_date(pd.Timestamp("2024-06-05 10:00"), now=NOW) == datetime(2024, 6, 5, 10, 0)


@pytest.mark.parametrize("raw", [None, "", "soon", "31/02/2024"])
def test_unparsable_date_falls_back_to_now(raw):
    assert parse_date(raw, now=NOW) == NOW


@pytest.mark.parametrize("raw, expected", [
    ("3", 3), (2.0, 2), (None, 1), ("", 1), ("two", 1), ("0", 1),
])
def test_parse_quantity(raw, expected):
    assert parse_quantity(raw) == expected


def test_vocabulary_match_is_case_insensitive_and_exact():
    assert map_vocabulary("mercado livre", MARKETPLACES) == "Mercado Livre"
    assert map_vocabulary("SHOPEE", MARKETPLACES) == "Shopee"
    assert map_vocabulary("Mercado", MARKETPLACES) == "Mercado"


def test_order_id_header_variants_and_trim():
    assert order_id_of({"Nº de Pedido da Plataforma": "  250601ABC "}) == "250601ABC"
    assert order_id_of({"N_de_Pedido_da_Plataforma": "250601XYZ"}) == "250601XYZ"
    assert order_id_of({"Nº de Pedido da Plataforma": 123456.0}) == "123456"
    assert order_id_of({"Loja": "x"}) == ""


def test_normalize_row_builds_deal_fields():
    row = {
        "Nº de Pedido da Plataforma": "250601ABC",
        "Quantia de Reembolso": "R$ 59,90",
        "Tempo de Devolução": "05/06/2024",
        "Plataforma": "shopee",
        "Loja": "Main Store",
        "Qtd.": "2",
        "Envio": "full",
        "Observação": None,
    }

    payload = normalize_row(row, currency="BRL", assigned_by_id=3, deadline_days=15, now=NOW)

    assert payload.order_id == "250601ABC"
    fields = payload.fields
    assert fields["title"] == "250601ABC"
    assert fields["amount"] == pytest.approx(59.9)
    assert fields["currency"] == "BRL"
    assert fields["assigned_by_id"] == 3
    assert fields["opened"] == "Y"
    assert fields["marketplace"] == "Shopee"
    assert fields["shipping_method"] == "Full"
    assert fields["quantity"] == 2
    assert fields["real_reason"] == ""
    assert fields["collection_date"] == "2024-06-05T12:00:00"
    assert fields["close_date"] == "2024-06-20T12:00:00"

    remote = payload.to_remote()
    assert remote["TITLE"] == "250601ABC"
    assert remote["OPPORTUNITY"] == pytest.approx(59.9)
    assert remote["CLOSEDATE"] == "2024-06-20T12:00:00"


def test_normalize_row_xml_headers():
    row = {"N_de_Pedido_da_Plataforma": "X1", "Tempo_de_Devolucao": "01/06/2024 09:15"}
    fields = normalize_row(row, now=NOW).fields
    assert fields["title"] == "X1"
    assert fields["collection_date"] == "2024-06-01T09:15:00"
    assert fields["quantity"] == 1
    assert fields["amount"] == 0.0
