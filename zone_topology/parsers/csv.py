import csv
import logging
from typing import List

from ..core.models import Record

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("type", "name", "content")


class RecordCSVParser:
    def __init__(self, csv_path: str):
        self.csv_path = csv_path

    def parse(self) -> List[Record]:
        """Parse a zone record set from CSV, skipping unusable rows."""
        records = []

        try:
            with open(self.csv_path, "r", newline="") as f:
                reader = csv.DictReader(f)
                fieldnames = [name.strip().lower() for name in (reader.fieldnames or [])]

                missing = [col for col in REQUIRED_COLUMNS if col not in fieldnames]
                if missing:
                    raise ValueError(f"CSV must contain columns: {', '.join(missing)}")

                for row_num, row in enumerate(reader, start=2):
                    row = {
                        (key or "").strip().lower(): (value or "").strip()
                        for key, value in row.items()
                    }
                    if not row.get("type") or not row.get("name"):
                        logger.warning(f"Missing type or name at row {row_num}, skipping")
                        continue

                    if not row.get("id"):
                        row["id"] = f"row-{row_num}"
                    proxied = row.get("proxied", "").lower()
                    row["proxied"] = True if proxied == "true" else False if proxied == "false" else None

                    records.append(Record.from_dict(row))

            logger.info(f"Successfully parsed {len(records)} records from CSV")

        except FileNotFoundError:
            raise FileNotFoundError(f"CSV file not found: {self.csv_path}")
        except ValueError:
            raise
        except Exception as e:
            raise Exception(f"Error parsing CSV: {e}")

        return records
