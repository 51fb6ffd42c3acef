from models import db
from datetime import datetime, timezone
from sqlalchemy.orm import validates
import uuid

FACET_CONTENT_TO_DEFINITION = 'Content-to-Definition'
FACET_DEFINITION_TO_CONTENT = 'Definition-to-Content'
FACET_CONTENT_TO_READING = 'Content-to-Reading'
FACET_AI_GENERATED_QUESTION = 'AI-Generated-Question'

VALID_FACET_TYPES = [
    FACET_CONTENT_TO_DEFINITION,
    FACET_DEFINITION_TO_CONTENT,
    FACET_CONTENT_TO_READING,
    FACET_AI_GENERATED_QUESTION,
]

# Facet created for every KU a scenario drills
DEFAULT_FACET_TYPE = FACET_CONTENT_TO_DEFINITION

FACET_STATUS_ACTIVE = 'active'
FACET_STATUS_FLAGGED = 'flagged'
FACET_STATUS_INACTIVE = 'inactive'

VALID_FACET_STATUSES = [FACET_STATUS_ACTIVE, FACET_STATUS_FLAGGED, FACET_STATUS_INACTIVE]


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ReviewFacet(db.Model):
    """ReviewFacet model - one independently scheduled testable angle on a KnowledgeUnit"""
    __tablename__ = 'review_facets'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    ku_id = db.Column(db.String(255), db.ForeignKey('knowledge_units.id'), nullable=False, index=True)

    facet_type = db.Column(db.String(50), nullable=False)

    # 0 (new) .. 8 (mastered)
    srs_stage = db.Column(db.Integer, nullable=False, default=0)

    next_review_at = db.Column(db.DateTime, nullable=False, default=_utcnow, index=True)
    last_review_at = db.Column(db.DateTime)

    # [{"timestamp": iso, "result": "pass"|"fail", "stage": int}, ...]
    history = db.Column(db.JSON, nullable=False, default=list)

    # active, flagged, inactive
    status = db.Column(db.String(20), nullable=False, default=FACET_STATUS_ACTIVE)

    # Question/answer seed for AI-Generated-Question facets
    seed_data = db.Column(db.JSON)

    created_at = db.Column(db.DateTime, default=_utcnow)

    version_id = db.Column(db.Integer, nullable=False)

    # Relationships
    knowledge_unit = db.relationship('KnowledgeUnit', back_populates='facets')

    __table_args__ = (
        db.UniqueConstraint('ku_id', 'facet_type', name='uq_facet_ku_type'),
    )
    __mapper_args__ = {'version_id_col': version_id}

    @validates('facet_type')
    def validate_facet_type(self, key, facet_type):
        if facet_type not in VALID_FACET_TYPES:
            raise ValueError(f"Invalid facet type: '{facet_type}'. Must be one of: {VALID_FACET_TYPES}")
        return facet_type

    @validates('srs_stage')
    def validate_srs_stage(self, key, stage):
        if stage is None or not 0 <= stage <= 8:
            raise ValueError(f'srs_stage must be between 0 and 8, got: {stage}')
        return stage

    @validates('status')
    def validate_status(self, key, status):
        if status not in VALID_FACET_STATUSES:
            raise ValueError(f"Invalid facet status: '{status}'. Must be one of: {VALID_FACET_STATUSES}")
        return status

    def to_dict(self):
        return {
            'id': self.id,
            'ku_id': self.ku_id,
            'facet_type': self.facet_type,
            'srs_stage': self.srs_stage,
            'next_review_at': self.next_review_at.isoformat() if self.next_review_at else None,
            'last_review_at': self.last_review_at.isoformat() if self.last_review_at else None,
            'history': list(self.history or []),
            'status': self.status,
            'seed_data': self.seed_data,
        }

    def __repr__(self):
        return f'<ReviewFacet {self.id} ku_id={self.ku_id} type={self.facet_type} stage={self.srs_stage}>'
