"""
Entity Loader Module.

This module loads client/supplier definitions from files so the entity
directory can be seeded or bulk-updated.

Supported Formats:
    - JSON files (a list, or {"clients": [...]}, or {"records": [...]})
    - CSV files (keywords and aliases separated by '|' or ';')

Author: ML Engineering Team
"""

import csv
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Union

from workorder.utils.logger import get_logger
from workorder.utils.exceptions import ConfigurationError
from .models import ContactInfo, Entity

# Initialize module logger
logger = get_logger(__name__)


LIST_SEPARATOR = re.compile(r"[|;]")

CONTACT_COLUMNS = ('phone', 'email', 'address', 'contact_person')


def _as_list(value: Any) -> List[str]:
    """Accept a list or a '|'/';'-separated string."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in LIST_SEPARATOR.split(str(value)) if part.strip()]


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'y')


def record_to_entity(record: Dict[str, Any]) -> Entity:
    """
    Build an Entity from one loaded record.

    Contact fields may be given as a nested 'contact_info' object or as
    flat phone/email/address/contact_person columns.

    Raises:
        ValueError: If the record does not describe a valid entity.
    """
    contact = record.get('contact_info')
    if isinstance(contact, str) and contact.strip():
        contact = json.loads(contact)
    if not contact:
        contact = {k: record.get(k) for k in CONTACT_COLUMNS if record.get(k)}

    priority = record.get('priority')
    entity = Entity(
        code=str(record.get('code') or '').strip(),
        name=str(record.get('name') or '').strip(),
        keywords=_as_list(record.get('keywords')),
        aliases=_as_list(record.get('aliases')),
        contact_info=ContactInfo.from_dict(contact),
        priority=int(priority) if priority not in (None, '') else 100,
        is_active=_as_bool(record.get('is_active')),
        notes=record.get('notes') or None,
    )
    entity.validate()
    return entity


class EntityLoader:
    """
    Loads entity definitions from JSON or CSV files.

    Example:
        >>> loader = EntityLoader()
        >>> entities = loader.load("clients.csv")
    """

    def load(self, file_path: Union[str, Path]) -> List[Entity]:
        """
        Load and validate every entity in a file.

        Args:
            file_path: Path to a .json or .csv file.

        Returns:
            List of validated Entity objects (ids unset).

        Raises:
            FileNotFoundError: If file doesn't exist.
            ConfigurationError: If format is not supported.
            ValueError: If a record is invalid (message names the record).
        """
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Entity file not found: {path}")

        extension = path.suffix.lower()

        if extension == '.json':
            records = self._load_json(path)
        elif extension == '.csv':
            records = self._load_csv(path)
        else:
            raise ConfigurationError("entities", f"Unsupported format: {extension}")

        entities = []
        for idx, record in enumerate(records, start=1):
            try:
                entities.append(record_to_entity(record))
            except ValueError as e:
                raise ValueError(f"{path.name} record {idx}: {e}") from e

        logger.info(f"Loaded {len(entities)} entity records from {path.name}")
        return entities

    def _load_json(self, path: Path) -> List[Dict[str, Any]]:
        """Load entity records from JSON file."""
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        if isinstance(data, dict):
            for key in ('clients', 'suppliers', 'records'):
                if key in data:
                    return data[key]
            raise ConfigurationError("entities", "JSON object needs a 'clients' or 'records' list")

        return data

    def _load_csv(self, path: Path) -> List[Dict[str, Any]]:
        """Load entity records from CSV file."""
        with open(path, 'r', encoding='utf-8-sig', newline='') as f:
            return [dict(row) for row in csv.DictReader(f)]
