"""Tests for handing described variables to a metadata store."""

import sys
import unittest
from pathlib import Path
from typing import Dict, List, Tuple

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "packages" / "core_engine" / "src"))
sys.path.insert(0, str(ROOT / "packages" / "cli" / "src"))

from tre_core.model import ValueType, Variable, Vocabulary, VocabularyItem
from tre_core.store import assign_vocabulary_ids, update_vocabulary_ids


class InMemoryStore:
    """Upserts vocabularies by name and hands out increasing ids."""

    def __init__(self, start: int = 100) -> None:
        self.next_id = start
        self.saved: Dict[str, Tuple[int, str, List[VocabularyItem]]] = {}
        self.calls = 0

    def upsert_vocabulary(self, name: str, description: str, items: List[VocabularyItem]) -> int:
        self.calls += 1
        if name not in self.saved:
            self.saved[name] = (self.next_id, description, list(items))
            self.next_id += 1
        return self.saved[name][0]


def _variable(name: str, vocab_name: str = "") -> Variable:
    vocabulary = None
    if vocab_name:
        vocabulary = Vocabulary(
            name=vocab_name,
            description=f"Vocabulary for {name}",
            items=[VocabularyItem(value=1, code="NEW"), VocabularyItem(value=2, code="DONE")],
        )
    value_type = ValueType.CATEGORY if vocabulary else ValueType.INTEGER
    return Variable(domain_id=1, name=name, value_type=value_type, vocabulary=vocabulary)


class TestAssignVocabularyIds(unittest.TestCase):

    def test_ids_flow_into_variables_and_items(self):
        variables = [_variable("id"), _variable("status", "status_vocabulary"), _variable("kind", "kind_enum")]
        store = InMemoryStore()
        id_map = assign_vocabulary_ids(variables, store)

        self.assertEqual(id_map, {"status_vocabulary": 100, "kind_enum": 101})
        self.assertIsNone(variables[0].vocabulary_id)
        self.assertEqual(variables[1].vocabulary_id, 100)
        self.assertEqual(variables[1].vocabulary.vocabulary_id, 100)
        self.assertEqual([i.vocabulary_id for i in variables[1].vocabulary.items], [100, 100])
        self.assertEqual(variables[2].vocabulary_id, 101)

    def test_shared_name_is_stored_once(self):
        variables = [_variable("a", "shared_codes"), _variable("b", "shared_codes")]
        store = InMemoryStore()
        assign_vocabulary_ids(variables, store)
        self.assertEqual(store.calls, 1)
        self.assertEqual(variables[0].vocabulary_id, variables[1].vocabulary_id)

    def test_description_and_items_passed_through(self):
        store = InMemoryStore()
        assign_vocabulary_ids([_variable("status", "status_vocabulary")], store)
        _, description, items = store.saved["status_vocabulary"]
        self.assertEqual(description, "Vocabulary for status")
        self.assertEqual([i.code for i in items], ["NEW", "DONE"])


class TestUpdateVocabularyIds(unittest.TestCase):

    def test_unknown_names_left_pending(self):
        variables = [_variable("status", "status_vocabulary")]
        update_vocabulary_ids(variables, {"other": 5})
        self.assertIsNone(variables[0].vocabulary_id)
        self.assertEqual([i.vocabulary_id for i in variables[0].vocabulary.items], [0, 0])

    def test_to_dict_after_update(self):
        variables = update_vocabulary_ids([_variable("status", "status_vocabulary")], {"status_vocabulary": 9})
        payload = variables[0].to_dict()
        self.assertEqual(payload["vocabulary_id"], 9)
        self.assertEqual(payload["vocabulary"]["vocabulary_id"], 9)
        self.assertEqual(payload["vocabulary"]["items"][0]["vocabulary_id"], 9)


if __name__ == "__main__":
    unittest.main()
