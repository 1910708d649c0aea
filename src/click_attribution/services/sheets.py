"""Spreadsheet export providers"""
from abc import ABC, abstractmethod
from typing import Any, Optional
import json
import logging
import re

from src.click_attribution.config import Settings

logger = logging.getLogger(__name__)

SHEETS_SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
]

DEFAULT_SHEET_ROWS = 1000

_A1_CELL = re.compile(r"^([A-Z]+)(\d+)$")


def column_letter(index: int) -> str:
    """1-based column index to A1 letters (1 -> A, 27 -> AA)."""
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def parse_cell(cell: str) -> tuple[int, int]:
    """A1 cell reference to 1-based (row, column), e.g. C12 -> (12, 3)."""
    match = _A1_CELL.match(cell.strip().upper().replace("$", ""))
    if not match:
        raise ValueError(f"Invalid cell reference: {cell}")
    letters, row = match.groups()
    column = 0
    for letter in letters:
        column = column * 26 + ord(letter) - ord("A") + 1
    return int(row), column


class SheetsProvider(ABC):
    @abstractmethod
    def ensure_sheet(self, sheet_name: str, headers: list[str]) -> bool:
        """Create the worksheet and header row when missing.

        Returns True if anything had to be created.
        """

    @abstractmethod
    def append_rows(self, sheet_name: str, rows: list[list[Any]]) -> Optional[str]:
        """Append rows after the last used row; returns the updated range."""

    @abstractmethod
    def read_range(self, sheet_name: str, cell_range: str) -> list[list[Any]]:
        pass


class GspreadSheetsProvider(SheetsProvider):
    def __init__(
        self,
        spreadsheet_id: str,
        credentials_path: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.spreadsheet_id = spreadsheet_id
        self.credentials_path = credentials_path
        self.timeout = timeout
        self._client = None
        self._spreadsheet = None

    @property
    def client(self):
        """Lazy initialization of gspread client."""
        if self._client is None:
            import gspread
            from google.auth import default
            from google.oauth2.service_account import Credentials

            if self.credentials_path:
                with open(self.credentials_path) as f:
                    cred_data = json.load(f)

                if cred_data.get("type") == "service_account":
                    creds = Credentials.from_service_account_file(
                        self.credentials_path,
                        scopes=SHEETS_SCOPES,
                    )
                else:
                    creds, _ = default(scopes=SHEETS_SCOPES)
            else:
                creds, _ = default(scopes=SHEETS_SCOPES)

            self._client = gspread.authorize(creds)
            if self.timeout:
                self._client.set_timeout(self.timeout)

        return self._client

    @property
    def spreadsheet(self):
        if self._spreadsheet is None:
            self._spreadsheet = self.client.open_by_key(self.spreadsheet_id)
        return self._spreadsheet

    def _worksheet(self, sheet_name: str):
        return self.spreadsheet.worksheet(sheet_name)

    def ensure_sheet(self, sheet_name: str, headers: list[str]) -> bool:
        from gspread.exceptions import WorksheetNotFound

        created = False
        try:
            worksheet = self._worksheet(sheet_name)
        except WorksheetNotFound:
            logger.info(f"Creating worksheet {sheet_name}")
            worksheet = self.spreadsheet.add_worksheet(
                title=sheet_name,
                rows=DEFAULT_SHEET_ROWS,
                cols=len(headers),
            )
            created = True

        if not any(worksheet.row_values(1)):
            logger.info(f"Writing header row to {sheet_name}")
            header_range = f"A1:{column_letter(len(headers))}1"
            worksheet.update(values=[headers], range_name=header_range, value_input_option="RAW")
            created = True

        return created

    def append_rows(self, sheet_name: str, rows: list[list[Any]]) -> Optional[str]:
        response = self._worksheet(sheet_name).append_rows(
            rows,
            value_input_option="USER_ENTERED",
            insert_data_option="INSERT_ROWS",
        )
        updated_range = (response or {}).get("updates", {}).get("updatedRange")
        logger.info(f"Sheets update: {updated_range}")
        return updated_range

    def read_range(self, sheet_name: str, cell_range: str) -> list[list[Any]]:
        return self._worksheet(sheet_name).get(cell_range)


class MockSheetsProvider(SheetsProvider):
    """In-memory spreadsheet used when no spreadsheet is configured."""

    def __init__(self):
        self.sheets: dict[str, list[list[Any]]] = {}
        self.append_calls = 0

    def ensure_sheet(self, sheet_name: str, headers: list[str]) -> bool:
        rows = self.sheets.setdefault(sheet_name, [])
        if not rows:
            rows.append(list(headers))
            return True
        return False

    def append_rows(self, sheet_name: str, rows: list[list[Any]]) -> Optional[str]:
        sheet = self.sheets.setdefault(sheet_name, [])
        start = len(sheet) + 1
        sheet.extend(list(row) for row in rows)
        self.append_calls += 1
        return f"{sheet_name}!A{start}:{column_letter(len(rows[0]) if rows else 1)}{len(sheet)}"

    def read_range(self, sheet_name: str, cell_range: str) -> list[list[Any]]:
        start, _, end = cell_range.split("!")[-1].partition(":")
        first_row, first_col = parse_cell(start)
        last_row, last_col = parse_cell(end or start)
        rows = self.sheets.get(sheet_name, [])[first_row - 1:last_row]
        return [list(row[first_col - 1:last_col]) for row in rows]

    def data_rows(self, sheet_name: str) -> list[list[Any]]:
        return self.sheets.get(sheet_name, [])[1:]


def get_sheets_provider(settings: Settings) -> SheetsProvider:
    if settings.SHEETS_SPREADSHEET_ID:
        return GspreadSheetsProvider(
            spreadsheet_id=settings.SHEETS_SPREADSHEET_ID,
            credentials_path=settings.GOOGLE_APPLICATION_CREDENTIALS,
            timeout=settings.REMOTE_CALL_TIMEOUT_SECONDS,
        )

    logger.warning("SHEETS_SPREADSHEET_ID not configured - exports go to an in-memory sheet")
    return MockSheetsProvider()
