"""Hand-off of described variables to a metadata store."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol, Sequence

from tre_core.model import Variable, VocabularyItem

logger = logging.getLogger(__name__)


class VocabularyStore(Protocol):
    """Anything that can persist a vocabulary and return its id.

    Upserts are keyed by name, so saving the same vocabulary twice returns
    the same id.
    """

    def upsert_vocabulary(self, name: str, description: str, items: List[VocabularyItem]) -> int:
        ...


def update_vocabulary_ids(variables: Sequence[Variable], id_map: Dict[str, int]) -> List[Variable]:
    """Copy store-assigned ids into each variable, its vocabulary and the items.

    ``id_map`` is keyed by vocabulary name. Variables whose vocabulary has no
    entry keep ``vocabulary_id`` unset.
    """
    for var in variables:
        vocab = var.vocabulary
        if vocab is None:
            continue
        vocab_id: Optional[int] = id_map.get(vocab.name)
        if vocab_id is None:
            continue
        vocab.vocabulary_id = vocab_id
        var.vocabulary_id = vocab_id
        for item in vocab.items:
            item.vocabulary_id = vocab_id
    return list(variables)


def assign_vocabulary_ids(variables: Sequence[Variable], store: VocabularyStore) -> Dict[str, int]:
    """Upsert every attached vocabulary through ``store`` and propagate the ids."""
    id_map: Dict[str, int] = {}
    for var in variables:
        vocab = var.vocabulary
        if vocab is None or vocab.name in id_map:
            continue
        id_map[vocab.name] = store.upsert_vocabulary(vocab.name, vocab.description, vocab.items)
        logger.debug("vocabulary %s stored as %d", vocab.name, id_map[vocab.name])
    update_vocabulary_ids(variables, id_map)
    return id_map
