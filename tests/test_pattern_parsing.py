from __future__ import annotations

from datetime import date


def test_pattern_extraction_reads_core_fields(scenario_a_text):
    from zero_invoice.modules.parsing.patterns import parse_with_patterns

    parsed = parse_with_patterns(scenario_a_text)

    assert parsed.invoice_number == "INV-1001"
    assert parsed.total == 1250.0
    assert parsed.customer_name == "Acme Corp"
    assert parsed.customer_email == "billing@acme.com"
    assert parsed.issue_date == date(2024, 1, 15)
    assert parsed.due_date == date(2024, 2, 14)
    assert [(li.name, li.quantity, li.unit_price) for li in parsed.line_items] == [
        ("Consulting", 10, 100.0),
        ("Hosting", 1, 250.0),
    ]


def test_normalize_date_variants():
    from zero_invoice.modules.parsing.patterns import normalize_date

    assert normalize_date("1/2/24") == date(2024, 1, 2)
    assert normalize_date("12-31-2023") == date(2023, 12, 31)
    assert normalize_date("13/02/2024") == date(2024, 2, 13)
    assert normalize_date("02/30/2024") is None
    assert normalize_date("13/13/2024") is None
    assert normalize_date("1/2/024") is None


def test_invalid_issue_date_is_dropped_not_defaulted():
    from zero_invoice.modules.parsing.patterns import extract_issue_date

    assert extract_issue_date("Date: 13/13/2024") is None


def test_issue_date_ignores_due_lines():
    from zero_invoice.modules.parsing.patterns import extract_due_date, extract_issue_date

    text = "Acme Corp\nDue: 03/01/2024\n"
    assert extract_issue_date(text) is None
    assert extract_due_date(text) == date(2024, 3, 1)


def test_invoice_number_skips_label_words():
    from zero_invoice.modules.parsing.patterns import extract_invoice_number

    assert extract_invoice_number("INVOICE\nInvoice Number: 2024-77\n") == "2024-77"
    assert extract_invoice_number("Ref # A-500") == "A-500"
    assert extract_invoice_number("Thanks for your business") is None


def test_total_prefers_total_over_subtotal_and_falls_back_to_amount_due():
    from zero_invoice.modules.parsing.patterns import extract_total

    assert extract_total("Subtotal: $100.00\nTax: $8.00\nTotal: $108.00") == 108.0
    assert extract_total("Amount Due: $55.10") == 55.1
    assert extract_total("Balance: 2,000") == 2000.0
    assert extract_total("Nothing to see") is None


def test_customer_name_skips_labels_emails_and_numbers():
    from zero_invoice.modules.parsing.patterns import extract_customer_name

    text = "INVOICE\nBill To:\n123 Main Street\nap@globex.com\nGlobex Inc\n"
    assert extract_customer_name(text) == "Globex Inc"
    assert extract_customer_name("abc\n1234\n") is None


def test_line_items_stay_within_a_line():
    from zero_invoice.modules.parsing.patterns import extract_line_items

    items = extract_line_items("Acme Corp\nWeb Design 2 $500 $1,000\nnot an item line\n")

    assert len(items) == 1
    assert items[0].name == "Web Design"
    assert items[0].quantity == 2
    assert items[0].unit_price == 500.0
