# Overview: Pytest coverage for bank statement parsing and idempotent import.

"""
Statement Import Tests

camt.053 and CSV exports normalize to the same signed-cent lines, and
re-importing a statement never duplicates lines.
"""

import pytest

from studio_ledger.models import BankStatement, BankStatementLine
from studio_ledger.money import to_cents
from studio_ledger.services import statement_import_service as importer
from studio_ledger.services.statement_import_service import StatementParseError


CAMT053 = b"""<?xml version="1.0" encoding="UTF-8"?>
<Document xmlns="urn:iso:std:iso:20022:tech:xsd:camt.053.001.04">
  <BkToCstmrStmt>
    <Stmt>
      <Id>STMT-2025-03</Id>
      <CreDtTm>2025-03-05T06:00:00</CreDtTm>
      <Acct><Id><IBAN>CH9300762011623852957</IBAN></Id></Acct>
      <Ntry>
        <Amt Ccy="CHF">2762.07</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <BookgDt><Dt>2025-03-04</Dt></BookgDt>
        <ValDt><Dt>2025-03-04</Dt></ValDt>
        <AcctSvcrRef>ZKB-0001</AcctSvcrRef>
        <NtryDtls>
          <TxDtls>
            <Refs><EndToEndId>NOTPROVIDED</EndToEndId></Refs>
            <RltdPties><Dbtr><Nm>Stripe Payments Europe</Nm></Dbtr></RltdPties>
            <RmtInf><Ustrd>STRIPE-PO-123456</Ustrd></RmtInf>
          </TxDtls>
        </NtryDtls>
        <AddtlNtryInf>Stripe payout</AddtlNtryInf>
      </Ntry>
      <Ntry>
        <Amt Ccy="CHF">150.00</Amt>
        <CdtDbtInd>DBIT</CdtDbtInd>
        <BookgDt><Dt>2025-03-05</Dt></BookgDt>
        <AcctSvcrRef>ZKB-0002</AcctSvcrRef>
        <NtryDtls>
          <TxDtls>
            <RltdPties><Cdtr><Nm>Hausverwaltung AG</Nm></Cdtr></RltdPties>
          </TxDtls>
        </NtryDtls>
      </Ntry>
    </Stmt>
  </BkToCstmrStmt>
</Document>
"""

CSV_EXPORT = (
    "Buchungsdatum;Betrag;Währung;Buchungstext;Referenz\n"
    "04.03.2025;2762.07;CHF;Stripe payout;STRIPE-PO-123456\n"
    "05.03.2025;-150.00;CHF;Miete Studio;\n"
)


class TestCamt053:
    """ISO 20022 bank-to-customer statements."""

    def test_parse_entries(self):
        statement = importer.parse_camt053(CAMT053)

        assert statement.source == importer.SOURCE_CAMT053
        assert statement.account_iban == "CH9300762011623852957"
        credit, debit = statement.lines
        assert credit.amount_cents == 276207
        assert credit.currency == "CHF"
        assert credit.posted_at.isoformat() == "2025-03-04"
        assert credit.remittance_reference == "STRIPE-PO-123456"
        assert credit.end_to_end_id is None
        assert credit.counterparty == "Stripe Payments Europe"
        assert credit.bank_reference == "ZKB-0001"
        assert debit.amount_cents == -15000
        assert debit.counterparty == "Hausverwaltung AG"

    def test_not_a_statement(self):
        with pytest.raises(StatementParseError):
            importer.parse_camt053(b"<Document><Other/></Document>")

    def test_invalid_xml(self):
        with pytest.raises(StatementParseError):
            importer.parse_camt053(b"<Document>")


class TestCsv:
    """E-banking CSV downloads."""

    def test_parse_semicolon_export(self):
        statement = importer.parse_csv(CSV_EXPORT)

        assert [line.amount_cents for line in statement.lines] == [276207, -15000]
        assert statement.lines[0].posted_at.isoformat() == "2025-03-04"
        assert statement.lines[0].remittance_reference == "STRIPE-PO-123456"
        assert statement.lines[1].remittance_reference is None

    def test_missing_date_column(self):
        with pytest.raises(StatementParseError):
            importer.parse_csv("Amount;Currency\n10.00;CHF\n20.00;CHF\n")

    def test_detect_format(self):
        assert importer.detect_format("march.xml", b"") == importer.SOURCE_CAMT053
        assert importer.detect_format(None, b"  <?xml") == importer.SOURCE_CAMT053
        assert importer.detect_format("march.xlsx", b"PK\x03\x04") == importer.SOURCE_XLSX
        assert importer.detect_format("march.csv", b"Date;Amount") == importer.SOURCE_CSV


class TestDedupe:
    """Stable line keys."""

    def test_identical_lines_get_distinct_keys(self):
        text = (
            "Date;Amount;Description\n"
            "04.03.2025;50.00;Cash deposit\n"
            "04.03.2025;50.00;Cash deposit\n"
        )
        lines = importer.parse_csv(text).lines

        keys = importer.dedupe_keys(lines)

        assert len(set(keys)) == 2
        assert importer.dedupe_keys(lines) == keys


class TestImport:
    """Persisting statements."""

    def test_import_persists_lines(self, db_session, org_a):
        result = importer.import_statement(org_a.id, "march.xml", CAMT053, actor="anna")

        assert result.statement.source == importer.SOURCE_CAMT053
        assert len(result.new_lines) == 2
        assert result.skipped_count == 0
        assert db_session.query(BankStatementLine).filter_by(org_id=org_a.id).count() == 2

    def test_reimport_skips_known_lines(self, db_session, org_a):
        importer.import_statement(org_a.id, "march.csv", CSV_EXPORT.encode("utf-8"))

        again = importer.import_statement(org_a.id, "march.csv", CSV_EXPORT.encode("utf-8"))

        assert again.new_lines == []
        assert again.skipped_count == 2
        assert db_session.query(BankStatementLine).count() == 2
        assert db_session.query(BankStatement).count() == 2

    def test_same_file_in_other_org_is_imported(self, db_session, org_a, org_b):
        importer.import_statement(org_a.id, "march.csv", CSV_EXPORT.encode("utf-8"))

        result = importer.import_statement(org_b.id, "march.csv", CSV_EXPORT.encode("utf-8"))

        assert len(result.new_lines) == 2

    def test_latin1_csv(self, db_session, org_a):
        result = importer.import_statement(org_a.id, "old.csv", CSV_EXPORT.encode("latin-1"))

        assert len(result.new_lines) == 2

    def test_empty_file_rejected(self, db_session, org_a):
        with pytest.raises(StatementParseError):
            importer.import_statement(org_a.id, "empty.csv", b"")


class TestAmounts:
    """Number formats found in Swiss and European exports."""

    @pytest.mark.parametrize("text, cents", [
        ("1.234,56", 123456),
        ("1,234.56", 123456),
        ("1'234.56", 123456),
        ("-1.234,56", -123456),
        ("1.234.567", 123456700),
        ("45,50", 4550),
        ("CHF 2762.07", 276207),
    ])
    def test_to_cents(self, text, cents):
        assert to_cents(text) == cents

    def test_non_finite_amount_rejected(self):
        with pytest.raises(ValueError):
            to_cents("Infinity")

    def test_german_thousands_in_csv(self):
        text = "Buchungsdatum;Betrag;Text\n05.01.2025;1.234,56;Einzahlung\n"

        (line,) = importer.parse_csv(text).lines

        assert line.amount_cents == 123456
