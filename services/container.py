"""Service container - wires the store, generator and lock tables for one app."""
import logging
from functools import partial

from flask import current_app

from models import db
from services.content_generator import ContentGenerator
from services.ku_store import KUStore
from services.llm_provider_factory import LLMProviderFactory
from services.locks import KeyedLockRegistry
from services.review_service import ReviewService
from services.scenario_service import ScenarioService

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'tracker'


class ServiceContainer:
    """
    Long-lived collaborators for one Flask app.

    The lock tables live as long as the app so every request sees the same
    per-scenario and per-facet locks. The store wraps Flask-SQLAlchemy's
    scoped session, so each request still gets its own session. The LLM
    provider is created on first use; tests replace ``generator`` directly.
    """

    def __init__(self, app):
        provider_name = app.config.get('LLM_PROVIDER')
        model = app.config.get('LLM_MODEL') or LLMProviderFactory.get_default_model(provider_name)

        self.store = KUStore(db.session)
        self.scenario_locks = KeyedLockRegistry('scenarios')
        self.facet_locks = KeyedLockRegistry('facets')
        self.review_lock_timeout = app.config.get('REVIEW_LOCK_TIMEOUT', 5.0)
        self.generator = ContentGenerator(
            provider_loader=partial(LLMProviderFactory.create_provider, provider_name),
            model=model,
            timeout=app.config.get('LLM_TIMEOUT', 30.0)
        )
        logger.info(f"Service container ready (provider={provider_name}, model={model})")

    @property
    def scenarios(self) -> ScenarioService:
        return ScenarioService(self.store, self.generator, self.scenario_locks)

    @property
    def reviews(self) -> ReviewService:
        return ReviewService(self.store, self.generator, self.facet_locks, lock_timeout=self.review_lock_timeout)


def init_container(app) -> ServiceContainer:
    container = ServiceContainer(app)
    app.extensions[EXTENSION_KEY] = container
    return container


def get_container() -> ServiceContainer:
    return current_app.extensions[EXTENSION_KEY]
