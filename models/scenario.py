from models import db
from datetime import datetime, timezone
from sqlalchemy.orm import validates
import uuid

DIFFICULTY_LEVELS = ['N5', 'N4', 'N3', 'N2', 'N1']

STATE_ENCOUNTER = 'encounter'
STATE_DRILL = 'drill'
STATE_SIMULATE = 'simulate'
STATE_COMPLETED = 'completed'

VALID_STATES = [STATE_ENCOUNTER, STATE_DRILL, STATE_SIMULATE, STATE_COMPLETED]


class Scenario(db.Model):
    """Scenario model - one generated dialogue-based learning episode"""
    __tablename__ = 'scenarios'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default='')

    # Theme string sent to the generator, and the template it came from (if any)
    theme = db.Column(db.Text, nullable=False)
    template_id = db.Column(db.String(100))

    # N5, N4, N3, N2, N1
    difficulty_level = db.Column(db.String(2), nullable=False)

    # {"location", "participants", "goal", "time_of_day", "visual_prompt"}
    setting = db.Column(db.JSON, nullable=False, default=dict)

    # {"user": "Customer", "ai": "Clerk"}
    roles = db.Column(db.JSON)

    # [{"speaker", "text", "translation"}, ...]
    dialogue = db.Column(db.JSON, nullable=False, default=list)

    # [{"content", "reading", "meaning", "type", "ku_id", "status"}, ...]
    extracted_kus = db.Column(db.JSON, nullable=False, default=list)

    # [{"title", "explanation", "example_in_context"}, ...]
    grammar_notes = db.Column(db.JSON, nullable=False, default=list)

    # encounter, drill, simulate, completed
    state = db.Column(db.String(20), nullable=False, default=STATE_ENCOUNTER, index=True)

    # [{"speaker": "user"|"ai", "text", "timestamp", "correction"?, "scene_finished"?}, ...]
    chat_history = db.Column(db.JSON, nullable=False, default=list)

    evaluation = db.Column(db.JSON)

    # [{"scenario_id", "completed_at", "chat_history", "evaluation"}, ...]
    past_attempts = db.Column(db.JSON, nullable=False, default=list)

    # Completed scenario this one was cloned from on retry
    source_scenario_id = db.Column(db.String(36), db.ForeignKey('scenarios.id'))

    created_at = db.Column(
        db.DateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc).replace(tzinfo=None),
        index=True
    )
    completed_at = db.Column(db.DateTime)

    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version_id}

    @validates('difficulty_level')
    def validate_difficulty_level(self, key, level):
        if level not in DIFFICULTY_LEVELS:
            raise ValueError(f"Invalid difficulty level: '{level}'. Must be one of: {DIFFICULTY_LEVELS}")
        return level

    @validates('state')
    def validate_state(self, key, state):
        if state not in VALID_STATES:
            raise ValueError(f"Invalid scenario state: '{state}'. Must be one of: {VALID_STATES}")
        return state

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'theme': self.theme,
            'template_id': self.template_id,
            'difficulty_level': self.difficulty_level,
            'setting': self.setting or {},
            'roles': self.roles,
            'dialogue': self.dialogue or [],
            'extracted_kus': self.extracted_kus or [],
            'grammar_notes': self.grammar_notes or [],
            'state': self.state,
            'chat_history': self.chat_history or [],
            'evaluation': self.evaluation,
            'past_attempts': self.past_attempts or [],
            'source_scenario_id': self.source_scenario_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f'<Scenario {self.id} state={self.state}>'
