from models import db
from datetime import datetime, timezone
from sqlalchemy.orm import validates

from models.ku_data import VALID_KU_TYPES

# learning, reviewing
KU_STATUS_LEARNING = 'learning'
KU_STATUS_REVIEWING = 'reviewing'


class KnowledgeUnit(db.Model):
    """KnowledgeUnit model - an atomic learnable fact (word, kanji, grammar point, ...)"""
    __tablename__ = 'knowledge_units'

    # Deterministic id derived from type + content, see services.ku_store.make_ku_id
    id = db.Column(db.String(255), primary_key=True)

    # Vocab, Kanji, Grammar, Concept, ExampleSentence
    type = db.Column(db.String(30), nullable=False, index=True)

    # Primary surface form e.g. "食べる"; never changes after creation
    content = db.Column(db.String, nullable=False)

    # Per-type attribute record, see models.ku_data
    data = db.Column(db.JSON, default=dict)

    status = db.Column(db.String(20), nullable=False, default=KU_STATUS_LEARNING, index=True)
    facet_count = db.Column(db.Integer, nullable=False, default=0)

    personal_notes = db.Column(db.Text, default='')
    related_units = db.Column(db.JSON, default=list)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None))

    # Relationships
    facets = db.relationship('ReviewFacet', back_populates='knowledge_unit', lazy='dynamic')

    __table_args__ = (
        db.UniqueConstraint('type', 'content', name='uq_ku_type_content'),
    )

    @validates('type')
    def validate_type(self, key, ku_type):
        if ku_type not in VALID_KU_TYPES:
            raise ValueError(f"Invalid KU type: '{ku_type}'. Must be one of: {VALID_KU_TYPES}")
        return ku_type

    @validates('content')
    def validate_content(self, key, content):
        if not content or not content.strip():
            raise ValueError('KU content cannot be empty or whitespace')
        if self.content is not None and self.content != content.strip():
            raise ValueError('KU content is immutable once created')
        return content.strip()

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'content': self.content,
            'data': self.data or {},
            'status': self.status,
            'facet_count': self.facet_count,
            'personal_notes': self.personal_notes or '',
            'related_units': self.related_units or [],
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<KnowledgeUnit {self.id} ({self.type})>'
