"""CSV codec: vaults, categories and typed items to/from flat tables.

One table per concern. Item tables are selected by type: the column list
of each table is fixed, and the type tag decides which columns map to
which attribute-bag keys. On import the tag is recovered from the file
name (``items_<type>.csv`` or ``<type>.csv``).

Column layout of an item table::

    Name, <type-specific columns...>, [Notes], Vault, Category, Favorite,
    Updated, Created
"""

import csv
import io
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..vault.models import Category, Item, ItemType, Vault, new_id, utc_now_iso
from .errors import ParseError

logger = logging.getLogger(__name__)

VAULT_COLUMNS = ["ID", "Name", "Description", "Created", "Items Count"]
CATEGORY_COLUMNS = ["ID", "Name", "Color"]
TRAILING_COLUMNS = ["Vault", "Category", "Favorite", "Updated", "Created"]

VAULTS_FILE = "vaults.csv"
CATEGORIES_FILE = "categories.csv"

_SECTION_RE = re.compile(r"^=== (?P<name>[^=]+?) ===$", re.MULTILINE)


@dataclass(frozen=True)
class ItemTable:
    """Column layout for one item type.

    `fields` pairs a CSV column with the attribute-bag key it carries.
    Columns listed in `derived` are computed on export and folded back by
    a type-specific hook on import.
    """

    fields: Tuple[Tuple[str, str], ...]
    derived: Tuple[str, ...] = ()
    has_notes: bool = True
    derived_first: bool = False

    @property
    def columns(self) -> List[str]:
        plain = [column for column, _ in self.fields]
        derived = list(self.derived)
        body = derived + plain if self.derived_first else plain + derived
        notes = ["Notes"] if self.has_notes else []
        return ["Name"] + body + notes + TRAILING_COLUMNS


ITEM_TABLES: Dict[ItemType, ItemTable] = {
    ItemType.LOGIN: ItemTable(
        fields=(
            ("Username", "username"),
            ("Password", "password"),
            ("URL", "url"),
            ("TOTP Secret", "totp"),
        ),
    ),
    ItemType.CARD: ItemTable(
        fields=(
            ("Cardholder Name", "holderName"),
            ("Card Number", "number"),
        ),
        derived=("Expiry Month", "Expiry Year", "CVV", "PIN"),
    ),
    ItemType.IDENTITY: ItemTable(
        fields=(
            ("Email", "email"),
            ("Phone", "phone"),
            ("Address", "address1"),
            ("City", "city"),
            ("State", "state"),
            ("Zip", "postalCode"),
            ("Country", "country"),
            ("Passport", "passportNumber"),
            ("License", "licenseNumber"),
        ),
        derived=("Full Name",),
        derived_first=True,
    ),
    ItemType.NOTE: ItemTable(fields=(), derived=("Content",), has_notes=False),
    ItemType.WIFI: ItemTable(
        fields=(
            ("SSID", "ssid"),
            ("Password", "password"),
            ("Security Type", "securityType"),
        ),
    ),
    ItemType.BANK: ItemTable(
        fields=(
            ("Bank Name", "bankName"),
            ("Account Number", "accountNumber"),
            ("Branch", "branch"),
            ("Account Type", "accountType"),
            ("IFSC", "ifsc"),
            ("SWIFT", "swift"),
            ("Holder Name", "holderName"),
        ),
    ),
    ItemType.LICENSE: ItemTable(
        fields=(
            ("Product", "productName"),
            ("License Key", "licenseKey"),
            ("Licensed To", "licensedTo"),
            ("Email", "email"),
            ("Expiry Date", "expiryDate"),
        ),
    ),
    ItemType.DATABASE: ItemTable(
        fields=(
            ("Type", "dbType"),
            ("Host", "host"),
            ("Port", "port"),
            ("Database Name", "databaseName"),
            ("Username", "username"),
            ("Password", "password"),
        ),
    ),
    ItemType.SERVER: ItemTable(
        fields=(
            ("Hostname", "hostname"),
            ("IP Address", "ip"),
            ("OS", "os"),
            ("Username", "username"),
            ("Password", "password"),
            ("Hosting Provider", "hostingProvider"),
        ),
    ),
    ItemType.SSH_KEY: ItemTable(
        fields=(
            ("Host", "host"),
            ("Username", "username"),
            ("Private Key", "privateKey"),
            ("Public Key", "publicKey"),
            ("Passphrase", "passphrase"),
        ),
    ),
    ItemType.ID_CARD: ItemTable(
        fields=(
            ("ID Type", "cardTitle"),
            ("ID Number", "idName"),
            ("Full Name", "fullName"),
            ("Valid Till", "validTill"),
            ("Relation Name", "relationName"),
            ("Address", "address"),
        ),
    ),
    ItemType.FILE: ItemTable(
        fields=(("File Name", "fileName"),),
        derived=("Attachments",),
    ),
}


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def items_file_name(item_type: ItemType) -> str:
    """Archive entry name for an item table."""
    return f"items_{item_type.slug}.csv"


def type_from_file_name(file_name: str) -> ItemType:
    """Recover the item type from ``items_<type>.csv`` / ``<type>.csv``.

    Directory components and a trailing ``.enc`` are ignored.

    Raises:
        ParseError: Name is not an item table.
    """
    base = file_name.rsplit("/", 1)[-1]
    if base.endswith(".enc"):
        base = base[: -len(".enc")]
    if not base.lower().endswith(".csv"):
        raise ParseError("not a CSV file", source=file_name)
    stem = base[: -len(".csv")]
    if stem.lower().startswith("items_"):
        stem = stem[len("items_"):]
    try:
        return ItemType.from_tag(stem)
    except ValueError:
        raise ParseError(f"unknown item type {stem!r}", source=file_name)


class CSVCodec:
    """Encode/decode the portable CSV tables."""

    # ── Encoding ─────────────────────────────────────────────────────

    @staticmethod
    def _write(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
        writer.writerow(header)
        for row in rows:
            writer.writerow([_cell(v) for v in row])
        return buf.getvalue()

    def encode_vaults(self, vaults: Sequence[Vault]) -> str:
        return self._write(
            VAULT_COLUMNS,
            ([v.id, v.name, v.description, v.created_at, v.item_count] for v in vaults),
        )

    def encode_categories(self, categories: Sequence[Category]) -> str:
        return self._write(
            CATEGORY_COLUMNS,
            ([c.id, c.name, c.color] for c in categories),
        )

    def encode_by_type(self, items: Sequence[Item], item_type: ItemType) -> str:
        """Header plus one row per item of `item_type` (others are skipped)."""
        table = ITEM_TABLES[item_type]
        rows = []
        for item in items:
            if item.type != item_type:
                continue
            data = item.data or {}
            plain = [data.get(key) for _, key in table.fields]
            derived = self._derived_values(item, table)
            row: List[Any] = [item.name]
            row.extend(derived + plain if table.derived_first else plain + derived)
            if table.has_notes:
                row.append(item.notes)
            row.extend([
                item.vault_id,
                item.category_id,
                item.is_favorite,
                item.last_updated,
                item.created_at,
            ])
            rows.append(row)
        return self._write(table.columns, rows)

    @staticmethod
    def _derived_values(item: Item, table: ItemTable) -> List[Any]:
        data = item.data or {}
        if not table.derived:
            return []
        if item.type == ItemType.CARD:
            expiry = str(data.get("expiry") or "")
            month, _, year = expiry.partition("/")
            return [month, year, data.get("cvv"), data.get("pin")]
        if item.type == ItemType.IDENTITY:
            if data.get("firstName"):
                parts = [data.get("firstName"), data.get("lastName")]
                return [" ".join(p for p in parts if p)]
            return [data.get("fullName", "")]
        if item.type == ItemType.NOTE:
            return [data.get("content") or item.notes]
        if item.type == ItemType.FILE:
            return [len(item.attachments)]
        return ["" for _ in table.derived]

    def encode_sections(self, sections: Dict[str, str]) -> str:
        """Single-file CSV export: tables separated by ``=== name ===``."""
        return "\n\n".join(f"=== {name} ===\n{text}" for name, text in sections.items())

    # ── Decoding ─────────────────────────────────────────────────────

    def parse(self, text: str, source: Optional[str] = None) -> List[Dict[str, str]]:
        """Parse CSV text into header-keyed row maps.

        Blank lines are skipped and rows whose width differs from the
        header are dropped.

        Raises:
            ParseError: Unparseable quoting.
        """
        reader = csv.reader(io.StringIO(text, newline=""), strict=True)
        try:
            rows = [row for row in reader if any(cell.strip() for cell in row)]
        except csv.Error as exc:
            raise ParseError(f"malformed CSV ({exc})", source=source)
        if not rows:
            return []
        header = [h.strip() for h in rows[0]]
        # Excel-saved files start with a BOM
        if header and header[0].startswith("\ufeff"):
            header[0] = header[0][1:]
        result = []
        for row in rows[1:]:
            if len(row) != len(header):
                logger.debug("Dropping CSV row with %d cells (expected %d) in %s",
                             len(row), len(header), source or "<text>")
                continue
            result.append(dict(zip(header, row)))
        return result

    def split_sections(self, text: str) -> Dict[str, str]:
        """Inverse of encode_sections().

        A marker line only counts when it sits outside a quoted field: a
        multi-line cell may itself contain a ``=== name ===`` line.
        """
        matches = []
        body_start = 0
        for match in _SECTION_RE.finditer(text):
            # odd quote count since the last marker: inside an open field
            if text.count('"', body_start, match.start()) % 2:
                continue
            matches.append(match)
            body_start = match.end()
        sections = {}
        for index, match in enumerate(matches):
            start = match.end() + 1
            end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
            sections[match.group("name").strip()] = text[start:end].rstrip("\r\n")
        return sections

    def decode_vaults(self, rows: Sequence[Dict[str, str]]) -> List[Vault]:
        vaults = []
        for r in rows:
            try:
                item_count = int(r.get("Items Count") or 0)
            except ValueError:
                item_count = 0
            vaults.append(Vault(
                id=r.get("ID") or new_id(),
                name=r.get("Name", ""),
                description=r.get("Description") or None,
                created_at=r.get("Created") or utc_now_iso(),
                item_count=item_count,
                icon="shield",
                is_shared=False,
                shared_with=[],
                notes="",
            ))
        return vaults

    def decode_categories(self, rows: Sequence[Dict[str, str]]) -> List[Category]:
        return [
            Category(id=r.get("ID") or new_id(), name=r.get("Name", ""), color=r.get("Color", ""))
            for r in rows
        ]

    def decode_items(self, file_name: str, rows: Sequence[Dict[str, str]]) -> List[Item]:
        """Rebuild items from an item table. Every item gets a fresh id."""
        item_type = type_from_file_name(file_name)
        table = ITEM_TABLES[item_type]
        items = []
        for r in rows:
            now = utc_now_iso()
            data = {key: r.get(column, "") for column, key in table.fields}
            data.update(self._fold_derived(item_type, r))
            items.append(Item(
                id=new_id(),
                vault_id=r.get("Vault", ""),
                type=item_type,
                name=r.get("Name", ""),
                data=data,
                notes=r.get("Notes", "") if table.has_notes else None,
                category_id=r.get("Category") or None,
                is_favorite=r.get("Favorite") == "true",
                last_updated=r.get("Updated") or now,
                created_at=r.get("Created") or now,
            ))
        return items

    @staticmethod
    def _fold_derived(item_type: ItemType, r: Dict[str, str]) -> Dict[str, Any]:
        if item_type == ItemType.CARD:
            month, year = r.get("Expiry Month", ""), r.get("Expiry Year", "")
            return {
                "expiry": f"{month}/{year}" if (month or year) else "",
                "cvv": r.get("CVV", ""),
                "pin": r.get("PIN", ""),
            }
        if item_type == ItemType.IDENTITY:
            first, _, last = r.get("Full Name", "").strip().partition(" ")
            return {"firstName": first, "lastName": last.strip()}
        if item_type == ItemType.NOTE:
            return {"content": r.get("Content", "")}
        return {}
