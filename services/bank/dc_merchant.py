"""DC merchant bank statement API.

The statement endpoint answers ``GET <url>?account=..&date_start=YYMMDD&date_end=YYMMDD&sign=..``
with an XML document::

    <result>
      <str1>
        <name>...</name><docnum>1</docnum><date>06.04.21</date><payer>...</payer>
        <debet>15</debet><credit>0</credit><naznach>payment purpose</naznach>
      </str1>
      <str2>...</str2>
    </result>

or ``<result><code>100</code></result>`` (unknown account) /
``<result><code>102</code></result>`` (bad sign).
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Sequence
from xml.etree import ElementTree

import httpx
import structlog

from domain.entities import BankTransaction
from domain.errors import BankLookupError


log = structlog.get_logger(__name__)

ERROR_CODES = {
    "100": "account not found",
    "102": "invalid sign",
}

# float noise on values like 30.1 - 30
_EPS = 1e-9


def format_dc_date(d: date) -> str:
    return d.strftime("%y%m%d")


def parse_dc_date(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        day, month, year = raw.strip().split(".")
        return date(2000 + int(year), int(month), int(day))
    except ValueError:
        return None


def _amount(raw: str | None) -> float:
    if not raw:
        return 0.0
    try:
        return float(raw.strip().replace(" ", "").replace(",", "."))
    except ValueError:
        return 0.0


def _text(node: ElementTree.Element, tag: str) -> str:
    child = node.find(tag)
    return (child.text or "").strip() if child is not None and child.text else ""


def parse_statement(xml_text: str) -> list[BankTransaction]:
    try:
        root = ElementTree.fromstring(xml_text)
    except ElementTree.ParseError as e:
        raise BankLookupError(f"malformed statement: {e}") from e
    if root.tag != "result":
        nested = root.find(".//result")
        if nested is not None:
            root = nested
    code = _text(root, "code")
    if code in ERROR_CODES:
        raise BankLookupError(ERROR_CODES[code], bank_code=code)
    out: list[BankTransaction] = []
    for node in root:
        if not node.tag.startswith("str"):
            continue
        out.append(
            BankTransaction(
                docnum=_text(node, "docnum"),
                date=parse_dc_date(_text(node, "date")),
                name=_text(node, "name"),
                payer=_text(node, "payer"),
                purpose=_text(node, "naznach"),
                amounts={
                    "debet": _amount(_text(node, "debet")),
                    "credit": _amount(_text(node, "credit")),
                },
            )
        )
    return out


def find_matching_transaction(
    transactions: Iterable[BankTransaction],
    *,
    match_key: str,
    amount: float,
    tolerance: float,
    columns: Sequence[str] = ("debet", "credit"),
) -> BankTransaction | None:
    """First transaction whose purpose mentions ``match_key`` and pays ``amount``.

    Which statement column carries incoming funds is not settled, so every
    configured column is checked.
    """
    for t in transactions:
        if match_key not in (t.purpose or ""):
            continue
        if any(abs(t.amounts.get(col, 0.0) - amount) <= tolerance + _EPS for col in columns):
            return t
    return None


class DCMerchantClient:
    def __init__(
        self,
        *,
        api_url: str,
        account: str | None,
        api_key: str | None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url
        self.account = account
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def fetch_statement(self, start: date, end: date) -> list[BankTransaction]:
        if not self.account or not self.api_key:
            raise BankLookupError("bank credentials are not configured")
        params = {
            "account": self.account,
            "date_start": format_dc_date(start),
            "date_end": format_dc_date(end),
            "sign": self.api_key,
        }
        log.info("dc_statement_request", date_start=params["date_start"], date_end=params["date_end"])
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.get(self.api_url, params=params)
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise BankLookupError(f"statement request failed: {e}") from e
        txs = parse_statement(r.text)
        log.info("dc_statement_loaded", count=len(txs))
        return txs

    async def find_payment(
        self,
        *,
        match_key: str,
        amount: float,
        lookback_days: int,
        tolerance: float,
        columns: Sequence[str],
        today: date | None = None,
    ) -> BankTransaction | None:
        end = today or date.today()
        start = end - timedelta(days=lookback_days)
        txs = await self.fetch_statement(start, end)
        return find_matching_transaction(txs, match_key=match_key, amount=amount, tolerance=tolerance, columns=columns)
