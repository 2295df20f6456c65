"""Domain records produced by query description.

``Variable``/``Vocabulary``/``VocabularyItem`` are the shapes handed to the
metadata store. ``ColumnInfo``, ``ForeignKeyEdge`` and ``ColumnMeta`` are
transient and only live for the duration of one describe call.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple


class ValueType(IntEnum):
    """Semantic value types with the integer codes used by the metadata store."""

    INTEGER = 1
    FLOAT = 2
    STRING = 3
    DATE = 4
    DATETIME = 5
    TIME = 6
    CATEGORY = 7
    MULTIRESPONSE = 8

    @property
    def label(self) -> str:
        return self.name.lower()


class KeyRole(str, Enum):
    NONE = "none"
    RECORD = "record"
    EXTERNAL = "external"


class VocabOrigin(str, Enum):
    FOREIGN_KEY = "foreign_key"
    ENUM = "enum"
    CHECK_CONSTRAINT = "check_constraint"
    CODE_TABLE = "code_table"


@dataclass
class ColumnInfo:
    name: str
    data_type: str
    nullable: bool = True
    source_table: Optional[str] = None
    source_schema: Optional[str] = None
    source_column: Optional[str] = None


@dataclass(frozen=True)
class ForeignKeyEdge:
    schema: str
    table: str
    column: str
    ref_schema: str
    ref_table: str
    ref_column: str

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.schema.lower(), self.table.lower(), self.column.lower())


@dataclass
class VocabularyItem:
    value: int
    code: str
    description: Optional[str] = None
    vocabulary_id: int = 0
    vocabulary_item_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Vocabulary:
    name: str
    description: str = ""
    items: List[VocabularyItem] = field(default_factory=list)
    vocabulary_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vocabulary_id": self.vocabulary_id,
            "name": self.name,
            "description": self.description,
            "items": [item.to_dict() for item in self.items],
        }


@dataclass
class Variable:
    domain_id: int
    name: str
    value_type: ValueType
    value_format: Optional[str] = None
    vocabulary_id: Optional[int] = None
    keyrole: KeyRole = KeyRole.NONE
    description: Optional[str] = None
    ontology_namespace: Optional[str] = None
    ontology_class: Optional[str] = None
    vocabulary: Optional[Vocabulary] = None
    variable_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variable_id": self.variable_id,
            "domain_id": self.domain_id,
            "name": self.name,
            "value_type_id": int(self.value_type),
            "value_type": self.value_type.label,
            "value_format": self.value_format,
            "vocabulary_id": self.vocabulary_id,
            "keyrole": self.keyrole.value,
            "description": self.description,
            "ontology_namespace": self.ontology_namespace,
            "ontology_class": self.ontology_class,
            "vocabulary": self.vocabulary.to_dict() if self.vocabulary else None,
        }


def relation_key(schema: Optional[str], table: str) -> str:
    """Format ``schema.table``, or just ``table`` when there is no schema."""
    return table if not schema else f"{schema}.{table}"


@dataclass
class ColumnMeta:
    """Per-column metadata row built up by the describe pipeline."""

    column_name: str
    data_type: str
    source_schema: Optional[str] = None
    source_table: Optional[str] = None
    base_column: Optional[str] = None
    description: Optional[str] = None
    vocabulary_relation: Optional[str] = None
    code_column: Optional[str] = None
    label_column: Optional[str] = None
    vocab_sample: Optional[List[Dict[str, Any]]] = None
    vocab_skipped: bool = False
    vocab_origin: Optional[VocabOrigin] = None

    @property
    def source_relation(self) -> Optional[str]:
        if self.source_table is None:
            return None
        return relation_key(self.source_schema, self.source_table)

    def score(self) -> int:
        """Ranking used when several rows describe the same projected column."""
        total = 0
        if self.source_relation is not None:
            total += 8
        if self.description is not None:
            total += 4
        if self.vocabulary_relation is not None:
            total += 2
        if self.label_column is not None or self.code_column is not None:
            total += 1
        return total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "column_name": self.column_name,
            "data_type": self.data_type,
            "source_relation": self.source_relation,
            "base_column": self.base_column,
            "description": self.description,
            "vocabulary_relation": self.vocabulary_relation,
            "code_column": self.code_column,
            "label_column": self.label_column,
            "vocab_sample": self.vocab_sample,
            "vocab_skipped": self.vocab_skipped,
            "vocab_origin": self.vocab_origin.value if self.vocab_origin else None,
        }
