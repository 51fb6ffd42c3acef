"""
Scenario Service - drives a generated scenario through its learning states.

    encounter --advance--> drill --complete_drill--> simulate --(scene finished | end)--> completed

State only moves forward. A completed scenario is never modified again;
retry() clones it into a new scenario in encounter.

Every transition for one scenario id runs under that id's lock, and either
commits fully or leaves the stored scenario as it was before the call.
"""

import logging
import re
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from models.ku_data import KU_TYPE_KANJI, KU_TYPE_VOCAB
from models.review_facet import DEFAULT_FACET_TYPE
from models.scenario import (
    DIFFICULTY_LEVELS,
    STATE_COMPLETED,
    STATE_DRILL,
    STATE_ENCOUNTER,
    STATE_SIMULATE,
    Scenario
)
from services.content_generator import ALLOWED_AI_ROLES, ALLOWED_USER_ROLES, ContentGenerator
from services.errors import (
    GenerationFailure,
    InvalidStateTransitionError,
    NotFoundError,
    ScenarioBusyError,
    ValidationError
)
from services.ku_store import KUStore
from services.llm_models.scenario_models import ExtractedKUCandidate
from services.locks import KeyedLockRegistry, LockUnavailable
from services.scenario_templates import SCENARIO_TEMPLATES, get_template, pick_template
from services.srs_scheduler import MAX_STAGE, utcnow

logger = logging.getLogger(__name__)

# ExtractedKU status values
KU_PROGRESS_NEW = 'new'
KU_PROGRESS_LEARNING = 'learning'
KU_PROGRESS_MASTERED = 'mastered'


def clean_content(text: Optional[str]) -> str:
    """Drop helpful glosses like "本屋 (Bookstore)" or "ほんや（honya）" """
    if not text:
        return ''
    return re.sub(r'（.*?）', '', re.sub(r'\(.*?\)', '', text)).strip()


def clean_meaning(text: Optional[str]) -> str:
    return re.sub(r'^-', '', text or '').strip()


def determine_roles(participants: List[str]) -> Dict[str, str]:
    """
    Pick which participant the learner plays and which the AI plays.

    Known learner roles win, then known partner roles; otherwise the second
    participant is the learner and the first is the partner.

    Example:
        >>> determine_roles(['Clerk', 'Customer'])
        {'user': 'Customer', 'ai': 'Clerk'}
    """
    if not participants:
        return {'user': 'Traveler', 'ai': 'Partner'}

    def matches(participant: str, keywords: List[str]) -> bool:
        # Whole words for latin names ("Me" must not match "Customer"), substrings for Japanese
        return any(
            re.search(rf'\b{re.escape(k)}\b', participant, re.IGNORECASE) if k.isascii() else k in participant
            for k in keywords
        )

    user_role = next((p for p in participants if matches(p, ALLOWED_USER_ROLES)), None)
    if user_role:
        ai_role = next((p for p in participants if p != user_role), 'Partner')
        return {'user': user_role, 'ai': ai_role}

    ai_role = next((p for p in participants if matches(p, ALLOWED_AI_ROLES)), None)
    if ai_role:
        user_role = next((p for p in participants if p != ai_role), 'Traveler')
        return {'user': user_role, 'ai': ai_role}

    if len(participants) > 1:
        return {'user': participants[1], 'ai': participants[0]}
    return {'user': 'Traveler', 'ai': participants[0]}


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


class ScenarioService:
    """Scenario Progression Machine"""

    def __init__(self, store: KUStore, generator: ContentGenerator, locks: KeyedLockRegistry):
        self.store = store
        self.generator = generator
        self.locks = locks

    # Queries

    def get_scenario(self, scenario_id: str) -> Scenario:
        scenario = self.store.get_scenario(scenario_id)
        if scenario is None:
            raise NotFoundError('Scenario', scenario_id)
        return scenario

    def list_scenarios(self, limit_days: Optional[int] = None) -> List[Scenario]:
        return self.store.list_scenarios(limit_days=limit_days)

    def get_templates(self) -> List[Dict]:
        return SCENARIO_TEMPLATES

    # Transitions

    @contextmanager
    def _transition(self, scenario_id: str, operation: str) -> Iterator[Scenario]:
        """
        Serialize work on one scenario and make it all-or-nothing.

        Yields the freshly loaded scenario. Any exception rolls the session back
        before it propagates; the lock is released only afterwards.
        """
        try:
            with self.locks.hold(scenario_id, blocking=False):
                with self.store.unit_of_work(f"{operation} scenario {scenario_id}"):
                    yield self.get_scenario(scenario_id)
        except LockUnavailable:
            raise ScenarioBusyError(scenario_id)

    @staticmethod
    def _require_state(scenario: Scenario, expected: str, operation: str) -> None:
        if scenario.state != expected:
            logger.warning(
                f"Rejected {operation} on scenario {scenario.id}: state is '{scenario.state}', needs '{expected}'"
            )
            raise InvalidStateTransitionError(scenario.id, scenario.state, operation)

    def create_scenario(
        self,
        difficulty: str,
        theme: Optional[str] = None,
        template_id: Optional[str] = None
    ) -> Scenario:
        """
        Generate a new scenario in 'encounter' and link its extracted KUs.

        Nothing is persisted unless generation and every KU link succeed.

        Raises:
            ValidationError: unknown difficulty
            NotFoundError: unknown template_id
            GenerationFailure: generator failed or produced unusable content
            StoreFailure: persistence failed
        """
        if difficulty not in DIFFICULTY_LEVELS:
            raise ValidationError(
                f"difficulty must be one of {DIFFICULTY_LEVELS}, got: {difficulty!r}",
                field='difficulty'
            )

        template = None
        if template_id:
            template = get_template(template_id)
            if template is None:
                raise NotFoundError('Scenario template', template_id)
        elif not (theme and theme.strip()):
            template = pick_template(difficulty)

        resolved_theme = theme.strip() if theme and theme.strip() else template['base_theme']
        logger.info(f"Generating {difficulty} scenario for theme '{resolved_theme}'")

        generated = self.generator.generate_scenario(resolved_theme, difficulty)

        with self.store.unit_of_work('create scenario'):
            scenario = Scenario(
                title=generated.title,
                description=generated.description,
                theme=resolved_theme,
                template_id=template['id'] if template else None,
                difficulty_level=difficulty,
                setting=generated.setting.model_dump(),
                roles=generated.roles.model_dump() if generated.roles else None,
                dialogue=[line.model_dump() for line in generated.dialogue],
                extracted_kus=self._link_extracted_kus(generated.extracted_kus),
                grammar_notes=[note.model_dump() for note in generated.grammar_notes],
                state=STATE_ENCOUNTER,
                chat_history=[],
                past_attempts=[],
                created_at=utcnow(),
            )
            self.store.save_scenario(scenario)

        logger.info(
            f"Created scenario {scenario.id} '{scenario.title}' with "
            f"{len(scenario.dialogue)} dialogue lines and {len(scenario.extracted_kus)} KUs"
        )
        return scenario

    def _link_extracted_kus(self, candidates: List[ExtractedKUCandidate]) -> List[Dict]:
        """Resolve each candidate to a KU (creating it if absent) and record its progress"""
        linked = []
        seen = set()
        for candidate in candidates:
            content = clean_content(candidate.content)
            if not content:
                logger.warning(f"Skipping extracted KU with empty content: {candidate!r}")
                continue

            ku_type = KU_TYPE_KANJI if candidate.type == 'kanji' else KU_TYPE_VOCAB
            if (ku_type, content) in seen:
                continue
            seen.add((ku_type, content))

            reading = clean_content(candidate.reading)
            meaning = clean_meaning(candidate.meaning)
            if ku_type == KU_TYPE_KANJI:
                data = {'meaning': meaning, 'reading': reading}
            else:
                data = {'reading': reading, 'definition': meaning}

            try:
                ku, created = self.store.upsert_ku(content, ku_type, data)
            except ValueError as e:
                raise GenerationFailure('generate_scenario', f"Unusable extracted KU '{content}': {e}", cause=e)

            status = KU_PROGRESS_NEW if created else self._progress_status(ku.id)
            logger.info(f"Linked extracted KU '{content}' -> {ku.id} (created={created}, status={status})")
            linked.append({
                'content': content,
                'reading': reading,
                'meaning': meaning,
                'type': candidate.type,
                'ku_id': ku.id,
                'status': status,
            })
        return linked

    def _progress_status(self, ku_id: str) -> str:
        facet = self.store.find_facet(ku_id, DEFAULT_FACET_TYPE)
        if facet is None:
            return KU_PROGRESS_NEW
        if facet.srs_stage >= MAX_STAGE:
            return KU_PROGRESS_MASTERED
        return KU_PROGRESS_LEARNING

    def advance(self, scenario_id: str) -> Scenario:
        """
        encounter -> drill: create a default facet for every extracted KU lacking one.

        Raises:
            NotFoundError, InvalidStateTransitionError, ScenarioBusyError, StoreFailure
        """
        with self._transition(scenario_id, 'advance') as scenario:
            self._require_state(scenario, STATE_ENCOUNTER, 'advance')

            created = 0
            updated_kus = []
            for item in scenario.extracted_kus or []:
                item = dict(item)
                ku = self.store.get_ku(item['ku_id']) if item.get('ku_id') else None
                if ku is None:
                    ku_type = KU_TYPE_KANJI if item.get('type') == 'kanji' else KU_TYPE_VOCAB
                    ku, _ = self.store.upsert_ku(item['content'], ku_type, {})
                    item['ku_id'] = ku.id

                _, facet_created = self.store.ensure_facet(ku.id, DEFAULT_FACET_TYPE)
                if facet_created:
                    created += 1
                updated_kus.append(item)

            scenario.extracted_kus = updated_kus
            scenario.state = STATE_DRILL
            self.store.save_scenario(scenario)

        logger.info(f"Scenario {scenario_id}: encounter -> drill, created {created} facets")
        return scenario

    def complete_drill(self, scenario_id: str) -> Scenario:
        """drill -> simulate: reset chat history and assign roles"""
        with self._transition(scenario_id, 'complete_drill') as scenario:
            self._require_state(scenario, STATE_DRILL, 'complete_drill')

            roles = scenario.roles or {}
            if not (roles.get('user') and roles.get('ai')):
                roles = determine_roles((scenario.setting or {}).get('participants') or [])
                logger.info(f"Scenario {scenario_id}: derived roles user={roles['user']}, ai={roles['ai']}")

            scenario.roles = dict(roles)
            scenario.chat_history = []
            scenario.state = STATE_SIMULATE
            self.store.save_scenario(scenario)

        logger.info(f"Scenario {scenario_id}: drill -> simulate")
        return scenario

    def chat_turn(self, scenario_id: str, user_message: str) -> Scenario:
        """
        One learner utterance in 'simulate'.

        Appends the learner turn and the AI reply. When the generator reports
        the scene finished, the scene is evaluated and the scenario completed
        in the same unit of work.

        Raises:
            ValidationError: empty message
            GenerationFailure: chat or evaluation call failed (scenario unchanged)
        """
        if not user_message or not user_message.strip():
            raise ValidationError('user_message cannot be empty', field='user_message')

        with self._transition(scenario_id, 'chat') as scenario:
            self._require_state(scenario, STATE_SIMULATE, 'chat')

            history = list(scenario.chat_history or [])
            reply = self.generator.chat_turn(scenario, history, user_message.strip())

            user_turn = {'speaker': 'user', 'text': user_message.strip(), 'timestamp': _timestamp_ms()}
            ai_turn = {
                'speaker': 'ai',
                'text': reply.message,
                'timestamp': _timestamp_ms(),
                'scene_finished': reply.scene_finished,
            }
            if reply.correction:
                ai_turn['correction'] = reply.correction

            scenario.chat_history = history + [user_turn, ai_turn]
            if reply.scene_finished:
                self._complete(scenario)
            self.store.save_scenario(scenario)

        logger.info(
            f"Scenario {scenario_id}: chat turn {len(scenario.chat_history) // 2}, "
            f"scene_finished={scenario.state == STATE_COMPLETED}"
        )
        return scenario

    def end_simulation(self, scenario_id: str) -> Scenario:
        """simulate -> completed on the learner's request, with evaluation"""
        with self._transition(scenario_id, 'end') as scenario:
            self._require_state(scenario, STATE_SIMULATE, 'end')
            if not scenario.chat_history:
                raise ValidationError(
                    f"Scenario {scenario_id} has no conversation to evaluate",
                    scenario_id=scenario_id
                )
            self._complete(scenario)
            self.store.save_scenario(scenario)
        return scenario

    def _complete(self, scenario: Scenario) -> None:
        # Failed outcomes only recommend an action; facets are left alone
        evaluation = self.generator.evaluate_scene(scenario, list(scenario.chat_history or []))
        scenario.evaluation = evaluation.model_dump()
        scenario.state = STATE_COMPLETED
        scenario.completed_at = utcnow()
        logger.info(
            f"Scenario {scenario.id}: simulate -> completed, outcome={evaluation.outcome}, "
            f"rating={evaluation.rating}, recommended_action={evaluation.recommended_action}"
        )

    def retry(self, scenario_id: str) -> Scenario:
        """
        Start a fresh run of a completed scenario.

        The new scenario starts in 'encounter' with the same content and carries
        the source's attempts plus the source run itself in past_attempts.
        """
        with self._transition(scenario_id, 'retry') as source:
            self._require_state(source, STATE_COMPLETED, 'retry')

            attempt = {
                'scenario_id': source.id,
                'completed_at': source.completed_at.isoformat() if source.completed_at else None,
                'chat_history': list(source.chat_history or []),
                'evaluation': source.evaluation,
            }
            extracted = []
            for item in source.extracted_kus or []:
                item = dict(item)
                if item.get('ku_id') and self.store.get_ku(item['ku_id']) is not None:
                    item['status'] = self._progress_status(item['ku_id'])
                extracted.append(item)

            clone = Scenario(
                title=source.title,
                description=source.description,
                theme=source.theme,
                template_id=source.template_id,
                difficulty_level=source.difficulty_level,
                setting=dict(source.setting or {}),
                roles=dict(source.roles) if source.roles else None,
                dialogue=list(source.dialogue or []),
                extracted_kus=extracted,
                grammar_notes=list(source.grammar_notes or []),
                state=STATE_ENCOUNTER,
                chat_history=[],
                past_attempts=list(source.past_attempts or []) + [attempt],
                source_scenario_id=source.id,
                created_at=utcnow(),
            )
            self.store.save_scenario(clone)

        logger.info(f"Scenario {scenario_id} retried as {clone.id} ({len(clone.past_attempts)} past attempts)")
        return clone
