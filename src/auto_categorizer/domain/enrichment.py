from datetime import datetime
from typing import Any

from pydantic import BaseModel

from auto_categorizer.logger import get_logger
from auto_categorizer.models import EnrichmentRecord, EnrichmentSource

logger = get_logger(__name__)


class EnrichmentStore:
    """
    Provenance-tracked attribute writes.

    Each (entity, attribute) pair has at most one record holding the last
    accepted value, its source and the lock flag. Once locked, only
    user-sourced writes may change the value.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], EnrichmentRecord] = {}

    def enrich(
        self,
        entity: BaseModel,
        attribute: str,
        value: Any,
        source: EnrichmentSource,
    ) -> bool:
        entity_id = str(getattr(entity, "id"))
        key = (entity_id, attribute)
        record = self._records.get(key)

        if record and record.locked and source != EnrichmentSource.USER:
            logger.debug(
                "[ENRICH] %s.%s locked; ignoring %s write.",
                entity_id,
                attribute,
                source.value,
            )
            return False

        if getattr(entity, attribute) == value:
            return False

        setattr(entity, attribute, value)
        self._records[key] = EnrichmentRecord(
            entity_id=entity_id,
            attribute_name=attribute,
            value=value,
            source=source,
            locked=record.locked if record else False,
        )
        return True

    def lock(self, entity: BaseModel, attribute: str) -> None:
        entity_id = str(getattr(entity, "id"))
        key = (entity_id, attribute)
        record = self._records.get(key)
        if record is None:
            self._records[key] = EnrichmentRecord(
                entity_id=entity_id,
                attribute_name=attribute,
                value=getattr(entity, attribute),
                locked=True,
            )
        elif not record.locked:
            self._records[key] = record.model_copy(update={"locked": True})

    def is_locked(self, entity: BaseModel, attribute: str) -> bool:
        record = self._records.get((str(getattr(entity, "id")), attribute))
        return bool(record and record.locked)

    def is_enrichable(self, entity: BaseModel, attribute: str) -> bool:
        return not self.is_locked(entity, attribute)

    def get(self, entity: BaseModel, attribute: str) -> EnrichmentRecord | None:
        return self._records.get((str(getattr(entity, "id")), attribute))

    def clear(
        self,
        entity: BaseModel,
        attribute: str,
        source: EnrichmentSource | None = None,
    ) -> bool:
        """
        Remove the record (and with it the lock). When `source` is given the
        record is only removed if it was written by that source.
        """
        key = (str(getattr(entity, "id")), attribute)
        record = self._records.get(key)
        if record is None:
            return False
        if source is not None and record.source != source:
            return False
        del self._records[key]
        return True

    def recent(
        self,
        source: EnrichmentSource,
        attribute: str,
        since: datetime,
    ) -> list[EnrichmentRecord]:
        return [
            record
            for record in self._records.values()
            if record.source == source
            and record.attribute_name == attribute
            and record.updated_at >= since
        ]
