"""
Threaded tests for scenario transitions running at the same time.

These use a file-backed SQLite database so every worker thread gets its own
connection and session, like concurrent requests do.
"""

import sys
import os
import threading
import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from config import TestingConfig, config
from models import db
from models.knowledge_unit import KnowledgeUnit
from models.review_facet import ReviewFacet
from models.scenario import Scenario
from services.container import get_container
from services.errors import InvalidStateTransitionError, ScenarioBusyError
from tests.fakes import FakeContentGenerator

WAIT_SECONDS = 5


@pytest.fixture(scope='function')
def app(tmp_path, monkeypatch):
    """App over a fresh SQLite file; no app context is left pushed"""

    class FileTestingConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'tracker.db'}"

    monkeypatch.setitem(config, 'file-testing', FileTestingConfig)
    app = create_app('file-testing')

    with app.app_context():
        db.create_all()
        get_container().generator = FakeContentGenerator()

    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def container(app):
    with app.app_context():
        return get_container()


@pytest.fixture
def scenario_id(app, container):
    with app.app_context():
        return container.scenarios.create_scenario('N5', theme='Ordering coffee').id


def start_worker(app, results, name, work):
    """Run ``work`` in its own thread and app context, storing its result or exception"""

    def target():
        with app.app_context():
            try:
                results[name] = work()
            except Exception as e:
                results[name] = e

    thread = threading.Thread(target=target, name=name)
    thread.start()
    return thread


def test_concurrent_advance_exactly_one_succeeds(app, container, scenario_id, monkeypatch):
    store = container.store
    first_inside = threading.Event()
    resume = threading.Event()
    real_ensure_facet = store.ensure_facet

    def ensure_facet_paused_once(*args, **kwargs):
        if not first_inside.is_set():
            first_inside.set()
            resume.wait(timeout=WAIT_SECONDS)
        return real_ensure_facet(*args, **kwargs)

    monkeypatch.setattr(store, 'ensure_facet', ensure_facet_paused_once)
    results = {}

    first = start_worker(app, results, 'first', lambda: container.scenarios.advance(scenario_id).state)
    assert first_inside.wait(timeout=WAIT_SECONDS)

    second = start_worker(app, results, 'second', lambda: container.scenarios.advance(scenario_id).state)
    second.join(timeout=WAIT_SECONDS)
    resume.set()
    first.join(timeout=WAIT_SECONDS)

    assert results['first'] == 'drill'
    assert isinstance(results['second'], (ScenarioBusyError, InvalidStateTransitionError))

    with app.app_context():
        assert db.session.get(Scenario, scenario_id).state == 'drill'
        assert ReviewFacet.query.count() == 2


def test_advance_after_concurrent_winner_is_invalid(app, container, scenario_id):
    results = {}

    first = start_worker(app, results, 'first', lambda: container.scenarios.advance(scenario_id).state)
    first.join(timeout=WAIT_SECONDS)
    second = start_worker(app, results, 'second', lambda: container.scenarios.advance(scenario_id).state)
    second.join(timeout=WAIT_SECONDS)

    assert results['first'] == 'drill'
    assert isinstance(results['second'], InvalidStateTransitionError)


def test_concurrent_creates_share_extracted_kus(app, container):
    generator = container.generator
    first_generating = threading.Event()
    second_done = threading.Event()

    def hold_first_generation(operation):
        if operation == 'generate_scenario' and not first_generating.is_set():
            first_generating.set()
            second_done.wait(timeout=WAIT_SECONDS)

    generator.on_call = hold_first_generation
    results = {}

    def create():
        scenario = container.scenarios.create_scenario('N5', theme='Ordering coffee')
        return [item['ku_id'] for item in scenario.extracted_kus]

    first = start_worker(app, results, 'first', create)
    assert first_generating.wait(timeout=WAIT_SECONDS)
    second = start_worker(app, results, 'second', create)
    second.join(timeout=WAIT_SECONDS)
    second_done.set()
    first.join(timeout=WAIT_SECONDS)

    assert isinstance(results['second'], list)
    assert results['first'] == results['second']

    with app.app_context():
        assert Scenario.query.count() == 2
        assert KnowledgeUnit.query.count() == 2
