"""
Entity Directory Module.

Read-mostly view over the clients/suppliers table. Every query goes to
the database so concurrent pipelines always see the latest directory;
nothing is cached between calls.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from workorder.utils.logger import get_logger
from workorder.utils.exceptions import EntityNotFoundError
from .database_handler import DatabaseHandler
from .entity_loader import EntityLoader
from .models import Entity

logger = get_logger(__name__)


class EntityDirectory:
    """
    Lookup and maintenance of the entities documents are attributed to.

    Results are ordered by priority ascending, then name; the keyword
    matcher relies on this order to break confidence ties.

    Example:
        >>> directory = EntityDirectory(DatabaseHandler("storage/work_orders.db"))
        >>> directory.search("abc")
    """

    def __init__(self, db: DatabaseHandler) -> None:
        self.db = db

    def list_active(self) -> List[Entity]:
        """Fresh snapshot of all active entities."""
        return self.db.list_entities(active_only=True)

    def list_all(self) -> List[Entity]:
        return self.db.list_entities(active_only=False)

    def search(self, term: str, limit: int = 20) -> List[Entity]:
        """Case-insensitive substring match on name or code."""
        term = (term or "").strip()
        if not term:
            return []
        return self.db.search_entities(term, limit=limit)

    def by_code(self, code: str) -> Optional[Entity]:
        return self.db.get_entity_by_code(code)

    def by_id(self, entity_id: int) -> Optional[Entity]:
        return self.db.get_entity_by_id(entity_id)

    def require(self, entity_id: int) -> Entity:
        """
        Look up an entity by id.

        Raises:
            EntityNotFoundError: If no entity has this id.
        """
        entity = self.by_id(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    def create(self, entity: Entity) -> Entity:
        return self.db.insert_entity(entity)

    def update(self, entity_id: int, **fields: Any) -> Entity:
        """
        Update mutable fields of an entity.

        Raises:
            EntityNotFoundError: If no entity has this id.
            ValueError: If 'code' or an unknown field is passed.
        """
        if 'code' in fields:
            raise ValueError("Entity code cannot be changed")
        self.require(entity_id)
        self.db.update_entity(entity_id, **fields)
        return self.require(entity_id)

    def deactivate(self, entity_id: int) -> None:
        self.require(entity_id)
        self.db.deactivate_entity(entity_id)

    def bulk_import(self, file_path: Union[str, Path]) -> Dict[str, int]:
        """
        Create or update entities from a JSON or CSV file.

        Records are matched on code: unknown codes are created, known codes
        have their other fields overwritten. The file is fully validated
        before anything is written.

        Returns:
            Dictionary with 'created' and 'updated' counts.
        """
        entities = EntityLoader().load(file_path)

        created = updated = 0
        for entity in entities:
            existing = self.by_code(entity.code)
            if existing is None:
                self.create(entity)
                created += 1
            else:
                self.db.update_entity(
                    existing.id,
                    name=entity.name,
                    keywords=entity.keywords,
                    aliases=entity.aliases,
                    contact_info=entity.contact_info,
                    priority=entity.priority,
                    is_active=entity.is_active,
                    notes=entity.notes,
                )
                updated += 1

        logger.info(f"Entity import from {Path(file_path).name}: {created} created, {updated} updated")
        return {'created': created, 'updated': updated}

    def stats(self) -> Dict[str, int]:
        return self.db.get_entity_statistics()
