"""
Content Generator - scenario, chat and evaluation content from the LLM.

Every call either returns a validated Pydantic model or raises
GenerationFailure. Nothing is defaulted silently: a network error, timeout,
quota error or malformed response all surface to the caller as retryable
failures.
"""

import json
import logging
import time
from typing import Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel

from services.errors import GenerationFailure
from services.llm_provider_factory import LLMProvider
from services.llm_models.evaluation_models import AnswerEvaluation
from services.llm_models.scenario_models import (
    ChatTurnReply,
    GeneratedScenario,
    ScenarioEvaluation
)

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=BaseModel)

# Role names the generator may use; scenario_service matches participants against them
ALLOWED_USER_ROLES = [
    'Traveler', 'Traveller', 'Customer', 'Guest', 'Student', 'Patient', 'Me', 'Watashi', 'Passenger',
    '客', '私', '旅行者', '学生', '患者', '乗客'
]

ALLOWED_AI_ROLES = [
    'Teacher', 'Sensei', 'Staff', 'Clerk', 'Shopkeeper', 'Manager', 'Doctor', 'Nurse', 'Police', 'Officer',
    'Station Attendant', '先生', '店員', '医者', '看護師', '警察', '駅員', '係員'
]

DEFAULT_THEME = 'A common situation for an adult living in Japan'


class ContentGenerator:
    """Builds prompts, calls the LLM provider and validates its output"""

    def __init__(
        self,
        provider: Optional[LLMProvider] = None,
        provider_loader: Optional[Callable[[], LLMProvider]] = None,
        model: str = 'mistral-small-latest',
        timeout: float = 30.0
    ):
        """
        Args:
            provider: ready provider instance
            provider_loader: factory used on first call when no provider is given
            model: model name passed to the provider
            timeout: per-request timeout in seconds
        """
        self._provider = provider
        self._provider_loader = provider_loader
        self.model = model
        self.timeout = timeout

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            if self._provider_loader is None:
                raise GenerationFailure('setup', 'No LLM provider configured')
            try:
                self._provider = self._provider_loader()
            except Exception as e:
                logger.error(f"Failed to initialize LLM provider: {e}", exc_info=True)
                raise GenerationFailure('setup', str(e), cause=e)
        return self._provider

    def _complete(
        self,
        operation: str,
        system_prompt: str,
        user_message: str,
        response_model: Type[T],
        temperature: float = 0.7,
        max_tokens: int = 1000
    ) -> T:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]
        provider = self.provider
        start = time.perf_counter()
        try:
            result = provider.create_structured_completion(
                messages=messages,
                response_model=response_model,
                model=self.model,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=self.timeout
            )
        except Exception as e:
            duration = time.perf_counter() - start
            logger.error(
                f"Generation '{operation}' failed after {duration:.2f}s "
                f"(provider={provider.get_provider_name()}, model={self.model}): {e}",
                exc_info=True
            )
            raise GenerationFailure(operation, str(e), cause=e)

        duration = time.perf_counter() - start
        parsed = result.get("parsed_object")
        if not isinstance(parsed, response_model):
            logger.error(f"Generation '{operation}' returned {type(parsed).__name__}, expected {response_model.__name__}")
            raise GenerationFailure(operation, f"Malformed output, expected {response_model.__name__}")

        usage = result.get("usage") or {}
        logger.info(
            f"Generation '{operation}' succeeded in {duration:.2f}s: "
            f"model={result.get('model', self.model)}, tokens={usage.get('total_tokens', 0)}"
        )
        return parsed

    def generate_scenario(self, theme: Optional[str], difficulty: str) -> GeneratedScenario:
        """
        Generate dialogue, setting, target words and grammar notes for a theme.

        Raises:
            GenerationFailure: provider error or a scenario with no dialogue
        """
        theme = theme or DEFAULT_THEME
        system_prompt = f"""You are an expert Japanese language curriculum designer.
Create a "Genki-style" learning scenario for an ADULT traveler/expat (not a student).

Requirements:
1. Dialogue: a natural, realistic dialogue (6-12 lines) mixing polite and casual forms as the setting requires.
2. Vocabulary: STRICTLY LIMIT vocabulary to {difficulty} level. Introduce exactly 3-5 target words needed for the goal.
3. Grammar notes: 1-2 key grammar points used in the dialogue, explained like a textbook.
4. Visual context: a descriptive prompt that could be used to generate an image of the scene.
5. Roles:
   - User roles: {', '.join(ALLOWED_USER_ROLES)}
   - Partner roles: {', '.join(ALLOWED_AI_ROLES)}
   Use these exact terms for the 'roles' object and the 'participants' array.
6. Data formatting:
   - NO ROMAJI anywhere.
   - extracted_kus.content: Japanese text only (e.g. "本屋").
   - extracted_kus.reading: kana only (e.g. "ほんや").
   - extracted_kus.meaning: English definition only.

Return ONLY raw JSON matching the schema."""
        user_message = f"Target level: {difficulty}\nTheme/Setting: {theme}"

        scenario = self._complete('generate_scenario', system_prompt, user_message, GeneratedScenario, max_tokens=3000)
        if not scenario.dialogue:
            raise GenerationFailure('generate_scenario', 'Generated scenario has no dialogue')
        return scenario

    def chat_turn(self, scenario, history: List[Dict], user_message: str) -> ChatTurnReply:
        """Roleplay partner reply to ``user_message`` given the running chat history"""
        roles = scenario.roles or {}
        setting = scenario.setting or {}
        reference_script = "\n".join(
            f"{line.get('speaker')}: {line.get('text')} ({line.get('translation', '')})"
            for line in (scenario.dialogue or [])
        ) or "No reference script available."

        system_prompt = f"""You are a roleplay partner in a Japanese immersion scenario.
Scenario context:
- Title: {scenario.title}
- Setting: {setting.get('location', '')}
- Your role: {roles.get('ai', 'Partner')}
- User role: {roles.get('user', 'Traveler')}
- Goal: {setting.get('goal', '')}
- Difficulty: {scenario.difficulty_level}

REFERENCE SCRIPT (PLOT OUTLINE):
{reference_script}

PREVIOUS CHAT HISTORY:
{format_history(history)}

Instructions:
1. Act as {roles.get('ai', 'Partner')} and follow the reference script's key events.
2. Speak ONLY Japanese appropriate for the setting and your role, 1-2 sentences.
3. Do not repeat greetings already said; only ask for missing details.
4. If the user makes a grammar or vocabulary mistake, reply naturally and put a short correction in 'correction'.
5. Set 'scene_finished' to true only if the user has clearly achieved the goal ("{setting.get('goal', '')}") this turn."""

        return self._complete('chat_turn', system_prompt, user_message, ChatTurnReply, max_tokens=500)

    def evaluate_scene(self, scenario, history: List[Dict]) -> ScenarioEvaluation:
        """Grade the learner's performance over a finished roleplay"""
        roles = scenario.roles or {}
        setting = scenario.setting or {}
        system_prompt = f"""You are a Japanese teacher grading a roleplay.
- Title: {scenario.title}
- Goal: {setting.get('goal', '')}
- Level: {scenario.difficulty_level}
- Learner role: {roles.get('user', 'Traveler')}
- Partner role: {roles.get('ai', 'Partner')}

Decide whether the learner achieved the goal ('success'), rate the performance 0-10,
give short feedback in English, and list corrections for the learner's utterances
(original, correction, explanation). Set 'outcome' to 'passed' or 'failed' and
'recommended_action' to 'repeat_lesson' if the vocabulary needs more study or
'replay_chat' if another conversation attempt is enough."""

        return self._complete(
            'evaluate_scene',
            system_prompt,
            format_history(history),
            ScenarioEvaluation,
            temperature=0.3,
            max_tokens=1500
        )

    def evaluate_answer(
        self,
        user_answer: str,
        expected_answers: List[str],
        question: Optional[str],
        topic: Optional[str]
    ) -> AnswerEvaluation:
        """Lenient LLM judgement of a drill answer that did not match locally"""
        system_prompt = f"""You are an SRS evaluator. A user is being quizzed.
- The question was: "{question or 'N/A'}"
- The topic was: "{topic or 'N/A'}"
- The expected answer(s) are: {json.dumps(expected_answers, ensure_ascii=False)}

The user is correct if their answer is any one of the expected answers.
If the answer is correct but not in the list, return a pass with an explanation.
Be lenient with hiragana vs katakana and with extra punctuation or whitespace.
Return JSON: {{"result": "pass" | "fail", "explanation": "one sentence referencing the user's answer"}}"""
        user_message = f"User Answer: {user_answer}\nExpected: {json.dumps(expected_answers, ensure_ascii=False)}"

        return self._complete('evaluate_answer', system_prompt, user_message, AnswerEvaluation, temperature=0.3, max_tokens=200)


def format_history(history: List[Dict]) -> str:
    if not history:
        return "No previous conversation."
    return "\n".join(
        f"{'User' if msg.get('speaker') == 'user' else 'AI'}: {msg.get('text', '')}"
        for msg in history
    )
