#!/usr/bin/env python
"""Rewrite mirrored rows into the current column layout.

Reads every row through the header row actually stored in the sheet, rebuilds
the record and writes it back in canonical order, then fixes the header row.

Usage:
    python normalize_legacy_rows.py          # Google Sheet
    python normalize_legacy_rows.py --file   # local workbook as well
"""

import logging
import os
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
env_path = Path('.') / '.env'
load_dotenv(dotenv_path=env_path)

from app.core.config import settings
from app.core.errors import KYCError
from app.services.excel_store import ExcelRecordStore
from app.services.sheets_client import SheetsRecordStore


def main(argv) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    status = 0

    if settings.sheets_enabled:
        sheet_store = SheetsRecordStore.from_settings(settings)
        try:
            count = sheet_store.normalize_legacy_rows()
            print(f"✅ Normalized {count} rows in sheet '{settings.GOOGLE_SHEETS_SHEET_NAME}'")
        except KYCError as e:
            print(f"❌ Sheet normalization failed: {e.message}")
            status = 1
        finally:
            sheet_store.close()
    else:
        print("Missing GOOGLE_SHEETS_SPREADSHEET_ID, skipping Google Sheet")

    if "--file" in argv:
        file_store = ExcelRecordStore(
            os.path.join(settings.DATA_DIR, settings.EXCEL_FILENAME),
            max_attempts=settings.EXCEL_WRITE_ATTEMPTS,
        )
        try:
            count = file_store.normalize_legacy_rows()
            print(f"✅ Normalized {count} rows in {file_store.path}")
        except KYCError as e:
            print(f"❌ Workbook normalization failed: {e.message}")
            status = 1

    return status


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
