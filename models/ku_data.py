"""
Typed attribute records for KnowledgeUnit.data.

Each KU type has its own record. Keys the record does not know about are kept
in ``extra`` so older or hand-edited rows survive a round trip.
"""

from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, model_validator

KU_TYPE_VOCAB = 'Vocab'
KU_TYPE_KANJI = 'Kanji'
KU_TYPE_GRAMMAR = 'Grammar'
KU_TYPE_CONCEPT = 'Concept'
KU_TYPE_EXAMPLE_SENTENCE = 'ExampleSentence'

VALID_KU_TYPES = [
    KU_TYPE_VOCAB,
    KU_TYPE_KANJI,
    KU_TYPE_GRAMMAR,
    KU_TYPE_CONCEPT,
    KU_TYPE_EXAMPLE_SENTENCE,
]


class KUData(BaseModel):
    """Base record: collects unknown keys into ``extra``."""
    model_config = ConfigDict(extra='forbid')

    extra: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='before')
    @classmethod
    def _collect_unknown_keys(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        known = set(cls.model_fields)
        extra = dict(values.get('extra') or {})
        cleaned = {}
        for key, value in values.items():
            if key == 'extra':
                continue
            if key in known:
                cleaned[key] = value
            else:
                extra[key] = value
        cleaned['extra'] = extra
        return cleaned

    def to_json(self) -> Dict[str, Any]:
        """Flatten back to the stored JSON shape."""
        payload = self.model_dump(exclude={'extra'}, exclude_none=True)
        payload.update(self.extra)
        return payload


class VocabData(KUData):
    reading: Optional[str] = None
    definition: Optional[str] = None
    part_of_speech: Optional[str] = None


class KanjiData(KUData):
    meaning: Optional[str] = None
    onyomi: List[str] = Field(default_factory=list)
    kunyomi: List[str] = Field(default_factory=list)


class GrammarData(KUData):
    definition: Optional[str] = None
    structure: Optional[str] = None
    example: Optional[str] = None


class ConceptData(KUData):
    definition: Optional[str] = None


class ExampleSentenceData(KUData):
    translation: Optional[str] = None
    reading: Optional[str] = None


KU_DATA_MODELS: Dict[str, Type[KUData]] = {
    KU_TYPE_VOCAB: VocabData,
    KU_TYPE_KANJI: KanjiData,
    KU_TYPE_GRAMMAR: GrammarData,
    KU_TYPE_CONCEPT: ConceptData,
    KU_TYPE_EXAMPLE_SENTENCE: ExampleSentenceData,
}


def parse_ku_data(ku_type: str, raw: Optional[Dict[str, Any]]) -> KUData:
    """
    Validate a raw attribute map against the record for ``ku_type``.

    Raises:
        ValueError: unknown KU type
        pydantic.ValidationError: attribute values of the wrong shape
    """
    model = KU_DATA_MODELS.get(ku_type)
    if model is None:
        raise ValueError(f"Invalid KU type: '{ku_type}'. Must be one of: {VALID_KU_TYPES}")
    return model.model_validate(raw or {})
