# Overview: Bank statement parsing (camt.053, CSV, XLSX) and idempotent import.

"""
Statement Import Service

WHY: Reconciliation needs the bank's view of money movements. Studios
export statements from e-banking either as ISO 20022 camt.053 XML or as a
CSV/XLSX download; all three are normalized to the same line shape.

DESIGN:
- Parsers are pure (bytes/text in, ParsedStatement out)
- Amounts are signed cents: credits (money in) positive, debits negative
- Every line gets a dedupe key so overlapping statements can be imported
  repeatedly without duplicating lines
"""

from __future__ import annotations

import csv
import hashlib
import io
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable

from flask import current_app

from ..errors import LedgerCoreError
from ..extensions import db
from ..models import BankStatement, BankStatementLine
from ..money import to_cents
from ..time_utils import parse_iso_date, utcnow


class StatementParseError(LedgerCoreError):
    code = "STATEMENT_PARSE_ERROR"
    http_status = 400


SOURCE_CAMT053 = "camt053"
SOURCE_CSV = "csv"
SOURCE_XLSX = "xlsx"


@dataclass
class ParsedLine:
    posted_at: date
    amount_cents: int
    currency: str
    value_date: date | None = None
    description: str | None = None
    counterparty: str | None = None
    end_to_end_id: str | None = None
    remittance_reference: str | None = None
    bank_reference: str | None = None

    def fingerprint(self) -> str:
        parts = [
            self.posted_at.isoformat(),
            str(self.amount_cents),
            self.currency,
            self.end_to_end_id or "",
            self.remittance_reference or "",
            self.bank_reference or "",
            self.counterparty or "",
            self.description or "",
        ]
        return "|".join(parts)


@dataclass
class ParsedStatement:
    source: str
    lines: list[ParsedLine] = field(default_factory=list)
    account_iban: str | None = None
    statement_date: date | None = None


@dataclass
class ImportResult:
    statement: BankStatement
    new_lines: list[BankStatementLine]
    skipped_count: int

    def to_dict(self) -> dict:
        return {
            "statement": self.statement.to_dict(),
            "new_line_count": len(self.new_lines),
            "skipped_count": self.skipped_count,
            "lines": [line.to_dict() for line in self.new_lines],
        }


def dedupe_keys(lines: Iterable[ParsedLine]) -> list[str]:
    """
    Stable hash per line.

    Identical lines within one statement (two equal cash deposits on the
    same day) are told apart by their occurrence number.
    """
    seen: dict[str, int] = {}
    keys = []
    for line in lines:
        fp = line.fingerprint()
        seen[fp] = seen.get(fp, 0) + 1
        keys.append(hashlib.sha256(f"{fp}#{seen[fp]}".encode("utf-8")).hexdigest())
    return keys


def _clean(value) -> str | None:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


# =============================================================================
# CAMT.053
# =============================================================================

def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(elem, *path):
    """Follow a path of local tag names, ignoring namespaces."""
    current = elem
    for name in path:
        if current is None:
            return None
        current = next((c for c in current if _local(c.tag) == name), None)
    return current


def _children(elem, name):
    return [c for c in elem if _local(c.tag) == name] if elem is not None else []


def _text(elem, *path) -> str | None:
    node = _child(elem, *path)
    return _clean(node.text) if node is not None else None


def _camt_date(elem, name) -> date | None:
    raw = _text(elem, name, "Dt") or _text(elem, name, "DtTm")
    if not raw:
        return None
    return parse_iso_date(raw[:10])


def parse_camt053(content: bytes) -> ParsedStatement:
    """Parse an ISO 20022 camt.053 (BkToCstmrStmt) document."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise StatementParseError(f"Invalid XML: {exc}") from exc

    container = _child(root, "BkToCstmrStmt") if _local(root.tag) == "Document" else root
    if container is None or _local(container.tag) != "BkToCstmrStmt":
        raise StatementParseError("Not a camt.053 statement (BkToCstmrStmt missing)")

    statement = ParsedStatement(source=SOURCE_CAMT053)
    try:
        for stmt in _children(container, "Stmt"):
            statement.account_iban = statement.account_iban or _text(stmt, "Acct", "Id", "IBAN")
            created = _text(stmt, "CreDtTm")
            if created and statement.statement_date is None:
                statement.statement_date = parse_iso_date(created[:10])

            for ntry in _children(stmt, "Ntry"):
                amt = _child(ntry, "Amt")
                if amt is None or not amt.text:
                    raise StatementParseError("Entry without amount")
                cents = to_cents(amt.text.strip())
                indicator = _text(ntry, "CdtDbtInd")
                if indicator == "DBIT":
                    cents = -abs(cents)
                elif indicator == "CRDT":
                    cents = abs(cents)
                else:
                    raise StatementParseError(f"Unknown credit/debit indicator: {indicator!r}")

                posted = _camt_date(ntry, "BookgDt") or _camt_date(ntry, "ValDt")
                if posted is None:
                    raise StatementParseError("Entry without booking date")

                tx = _child(ntry, "NtryDtls", "TxDtls")
                end_to_end = _text(tx, "Refs", "EndToEndId")
                if end_to_end == "NOTPROVIDED":
                    end_to_end = None
                remittance = _text(tx, "RmtInf", "Strd", "CdtrRefInf", "Ref") or _text(tx, "RmtInf", "Ustrd")
                party = "Dbtr" if cents > 0 else "Cdtr"
                counterparty = _text(tx, "RltdPties", party, "Nm") or _text(tx, "RltdPties", party, "Pty", "Nm")

                statement.lines.append(ParsedLine(
                    posted_at=posted,
                    value_date=_camt_date(ntry, "ValDt"),
                    amount_cents=cents,
                    currency=(amt.get("Ccy") or "").upper(),
                    description=_text(ntry, "AddtlNtryInf") or _text(tx, "AddtlTxInf"),
                    counterparty=counterparty,
                    end_to_end_id=end_to_end,
                    remittance_reference=remittance,
                    bank_reference=_text(ntry, "AcctSvcrRef"),
                ))
    except ValueError as exc:
        raise StatementParseError(str(exc)) from exc

    return statement


# =============================================================================
# CSV / XLSX
# =============================================================================

# Column aliases as exported by Swiss e-banking (EN/DE/FR)
COLUMN_ALIASES = {
    "posted_at": ("posted_at", "date", "booking date", "buchungsdatum", "datum", "date de comptabilisation"),
    "value_date": ("value_date", "value date", "valuta", "valutadatum", "date de valeur"),
    "amount": ("amount", "betrag", "montant"),
    "credit": ("credit", "gutschrift", "crédit"),
    "debit": ("debit", "belastung", "lastschrift", "débit"),
    "currency": ("currency", "ccy", "währung", "waehrung", "monnaie"),
    "description": ("description", "text", "buchungstext", "details", "libellé"),
    "counterparty": ("counterparty", "name", "auftraggeber", "empfänger", "partenaire"),
    "end_to_end_id": ("end_to_end_id", "end-to-end-id", "endtoendid", "end to end id"),
    "remittance_reference": ("reference", "remittance_reference", "referenz", "referenznummer", "référence"),
    "bank_reference": ("bank_reference", "transaction id", "transaktions-id"),
}


def _parse_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in ("%d.%m.%Y", "%d.%m.%y", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return parse_iso_date(text)


def _resolve_columns(headers: Iterable[str]) -> dict[str, str]:
    lookup = {str(h).strip().lower(): h for h in headers if h is not None}
    columns = {}
    for field_name, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in lookup:
                columns[field_name] = lookup[alias]
                break
    return columns


def rows_to_statement(rows: list[dict], source: str, default_currency: str) -> ParsedStatement:
    """Map tabular rows (one dict per row, keyed by header) to statement lines."""
    statement = ParsedStatement(source=source)
    if not rows:
        return statement

    columns = _resolve_columns(rows[0].keys())
    if "posted_at" not in columns:
        raise StatementParseError("Statement has no date column")
    if "amount" not in columns and not ({"credit", "debit"} & set(columns)):
        raise StatementParseError("Statement has no amount column")

    def col(row, name):
        key = columns.get(name)
        return row.get(key) if key is not None else None

    for number, row in enumerate(rows, start=2):
        if not any(v not in (None, "") for v in row.values()):
            continue
        try:
            posted = _parse_date(col(row, "posted_at"))
            if "amount" in columns:
                cents = to_cents(col(row, "amount"))
            else:
                credit = to_cents(col(row, "credit")) or 0
                debit = to_cents(col(row, "debit")) or 0
                cents = abs(credit) - abs(debit)
        except ValueError as exc:
            raise StatementParseError(f"Row {number}: {exc}") from exc
        if posted is None or cents is None:
            raise StatementParseError(f"Row {number}: date and amount are required")

        statement.lines.append(ParsedLine(
            posted_at=posted,
            value_date=_parse_date(col(row, "value_date")),
            amount_cents=cents,
            currency=(_clean(col(row, "currency")) or default_currency).upper(),
            description=_clean(col(row, "description")),
            counterparty=_clean(col(row, "counterparty")),
            end_to_end_id=_clean(col(row, "end_to_end_id")),
            remittance_reference=_clean(col(row, "remittance_reference")),
            bank_reference=_clean(col(row, "bank_reference")),
        ))
    return statement


def parse_csv(text: str, default_currency: str = "CHF") -> ParsedStatement:
    text = text.lstrip("\ufeff")
    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel
    reader = csv.DictReader(io.StringIO(text), dialect=dialect)
    return rows_to_statement(list(reader), SOURCE_CSV, default_currency)


def parse_xlsx(stream, default_currency: str = "CHF") -> ParsedStatement:
    from openpyxl import load_workbook

    try:
        wb = load_workbook(stream, data_only=True, read_only=True)
    except Exception as exc:
        raise StatementParseError(f"Unreadable workbook: {exc}") from exc
    sheet = wb.active
    data = list(sheet.values)
    wb.close()
    if not data:
        return ParsedStatement(source=SOURCE_XLSX)
    headers = [str(h) if h is not None else "" for h in data[0]]
    rows = [
        {headers[i]: row[i] if i < len(row) else None for i in range(len(headers))}
        for row in data[1:]
    ]
    return rows_to_statement(rows, SOURCE_XLSX, default_currency)


def detect_format(file_name: str | None, content: bytes) -> str:
    ext = (file_name or "").rsplit(".", 1)[-1].lower() if file_name and "." in file_name else ""
    if ext == "xml" or content.lstrip()[:1] == b"<":
        return SOURCE_CAMT053
    if ext in {"xlsx", "xlsm"} or content[:2] == b"PK":
        return SOURCE_XLSX
    return SOURCE_CSV


def parse_statement(file_name: str | None, content: bytes, default_currency: str = "CHF") -> ParsedStatement:
    fmt = detect_format(file_name, content)
    if fmt == SOURCE_CAMT053:
        return parse_camt053(content)
    if fmt == SOURCE_XLSX:
        return parse_xlsx(io.BytesIO(content), default_currency)
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        # Older e-banking exports are Latin-1
        text = content.decode("latin-1")
    return parse_csv(text, default_currency)


# =============================================================================
# IMPORT
# =============================================================================

def import_statement(org_id: int, file_name: str | None, content: bytes, actor: str | None = None) -> ImportResult:
    """
    Parse and persist a statement.

    Lines already imported for the organization (same dedupe key) are
    skipped, so re-importing a file or an overlapping period is safe.
    """
    if not content:
        raise StatementParseError("Statement file is empty")

    parsed = parse_statement(file_name, content, current_app.config["DEFAULT_CURRENCY"])
    if not parsed.lines:
        raise StatementParseError("Statement contains no entries")

    keys = dedupe_keys(parsed.lines)
    existing = {
        key for (key,) in db.session.query(BankStatementLine.dedupe_key).filter(
            BankStatementLine.org_id == org_id,
            BankStatementLine.dedupe_key.in_(keys),
        ).all()
    }

    statement = BankStatement(
        org_id=org_id,
        source=parsed.source,
        account_iban=parsed.account_iban,
        statement_date=parsed.statement_date or max(line.posted_at for line in parsed.lines),
        file_name=file_name,
        imported_by=actor,
        imported_at=utcnow(),
    )
    db.session.add(statement)
    db.session.flush()

    new_lines = []
    for line, key in zip(parsed.lines, keys):
        if key in existing:
            continue
        row = BankStatementLine(
            org_id=org_id,
            statement_id=statement.id,
            posted_at=line.posted_at,
            value_date=line.value_date,
            amount_cents=line.amount_cents,
            currency=line.currency,
            description=line.description,
            counterparty=line.counterparty,
            end_to_end_id=line.end_to_end_id,
            remittance_reference=line.remittance_reference,
            bank_reference=line.bank_reference,
            dedupe_key=key,
        )
        db.session.add(row)
        new_lines.append(row)

    statement.line_count = len(new_lines)
    db.session.commit()

    current_app.logger.info(
        "Imported %s statement %s for org %s: %s new, %s already known",
        parsed.source, statement.id, org_id, len(new_lines), len(parsed.lines) - len(new_lines),
    )
    return ImportResult(statement=statement, new_lines=new_lines, skipped_count=len(parsed.lines) - len(new_lines))
