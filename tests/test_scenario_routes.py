"""
Integration tests for scenario routes (/scenarios/...).

Tests the HTTP surface of the scenario flow including:
- Generation and listing
- State transitions and their error responses
- Error body shape rendered by the app-level error handler
"""

import sys
import os
import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from models import db
from services.container import get_container
from services.llm_models import ChatTurnReply
from tests.fakes import FakeContentGenerator


@pytest.fixture(scope='function')
def client():
    """Create a test client with fresh database for each test"""
    app = create_app('testing')
    app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
    app.config['TESTING'] = True

    with app.app_context():
        db.create_all()
        get_container().generator = FakeContentGenerator()

        with app.test_client() as client:
            yield client

        db.session.remove()
        db.drop_all()


@pytest.fixture
def generator(client):
    return get_container().generator


@pytest.fixture
def scenario_id(client):
    response = client.post('/scenarios/generate', json={'difficulty': 'N5', 'theme': 'Ordering coffee'})
    assert response.status_code == 201
    return response.get_json()['scenario']['id']


class TestScenarioGeneration:
    """Tests for POST /scenarios/generate and listing"""

    def test_generate(self, client):
        response = client.post('/scenarios/generate', json={'difficulty': 'N5', 'theme': 'Ordering coffee'})

        assert response.status_code == 201
        data = response.get_json()
        assert data['success'] is True
        assert data['scenario']['state'] == 'encounter'
        assert len(data['scenario']['extracted_kus']) == 2

    def test_generate_missing_difficulty(self, client):
        response = client.post('/scenarios/generate', json={'theme': 'Ordering coffee'})

        assert response.status_code == 400
        data = response.get_json()
        assert data['success'] is False
        assert data['error_type'] == 'ValidationError'

    def test_generate_no_body(self, client):
        response = client.post('/scenarios/generate', data='not json', content_type='text/plain')

        assert response.status_code == 400

    def test_generate_unknown_template(self, client):
        response = client.post('/scenarios/generate', json={'difficulty': 'N5', 'template_id': 'nope'})

        assert response.status_code == 404
        assert response.get_json()['error_type'] == 'NotFoundError'

    def test_generate_failure_is_retryable_502(self, client, generator):
        generator.fail_on.add('generate_scenario')

        response = client.post('/scenarios/generate', json={'difficulty': 'N5', 'theme': 'Ordering coffee'})

        assert response.status_code == 502
        data = response.get_json()
        assert data['error_type'] == 'GenerationFailure'
        assert data['retryable'] is True

    def test_list_and_get(self, client, scenario_id):
        listing = client.get('/scenarios').get_json()
        detail = client.get(f'/scenarios/{scenario_id}').get_json()

        assert [s['id'] for s in listing['scenarios']] == [scenario_id]
        assert detail['scenario']['id'] == scenario_id

    def test_list_invalid_limit_days(self, client):
        response = client.get('/scenarios?limit_days=0')

        assert response.status_code == 400

    def test_get_unknown(self, client):
        response = client.get('/scenarios/missing')

        assert response.status_code == 404

    def test_templates(self, client):
        data = client.get('/scenarios/templates').get_json()

        assert len(data['templates']) >= 1
        assert {'id', 'title', 'base_theme', 'default_level'} <= set(data['templates'][0])


class TestScenarioFlow:
    """Tests for the transition endpoints"""

    def test_full_flow(self, client, generator, scenario_id):
        assert client.post(f'/scenarios/{scenario_id}/advance').get_json()['scenario']['state'] == 'drill'
        assert client.post(f'/scenarios/{scenario_id}/drill/complete').get_json()['scenario']['state'] == 'simulate'

        generator.replies = [
            ChatTurnReply(message='ホットですか？'),
            ChatTurnReply(message='ありがとうございました。', scene_finished=True),
        ]
        first = client.post(f'/scenarios/{scenario_id}/chat', json={'user_message': 'コーヒーをください'}).get_json()
        assert first['reply']['text'] == 'ホットですか？'
        assert first['scenario']['state'] == 'simulate'

        second = client.post(f'/scenarios/{scenario_id}/chat', json={'user_message': 'アイスでお願いします'}).get_json()
        assert second['scenario']['state'] == 'completed'
        assert second['scenario']['evaluation']['outcome'] == 'passed'

        retry = client.post(f'/scenarios/{scenario_id}/retry')
        assert retry.status_code == 201
        clone = retry.get_json()['scenario']
        assert clone['state'] == 'encounter'
        assert clone['source_scenario_id'] == scenario_id
        assert len(clone['past_attempts']) == 1

    def test_invalid_transition_is_409(self, client, scenario_id):
        response = client.post(f'/scenarios/{scenario_id}/drill/complete')

        assert response.status_code == 409
        data = response.get_json()
        assert data['error_type'] == 'InvalidStateTransitionError'
        assert data['current_state'] == 'encounter'
        assert data['scenario_id'] == scenario_id

    def test_advance_twice(self, client, scenario_id):
        assert client.post(f'/scenarios/{scenario_id}/advance').status_code == 200
        assert client.post(f'/scenarios/{scenario_id}/advance').status_code == 409

    def test_busy_scenario_is_409(self, client, scenario_id):
        with get_container().scenario_locks.hold(scenario_id):
            response = client.post(f'/scenarios/{scenario_id}/advance')

        assert response.status_code == 409
        assert response.get_json()['error_type'] == 'ScenarioBusyError'
        assert response.get_json()['retryable'] is True

    def test_chat_missing_message(self, client, scenario_id):
        client.post(f'/scenarios/{scenario_id}/advance')
        client.post(f'/scenarios/{scenario_id}/drill/complete')

        response = client.post(f'/scenarios/{scenario_id}/chat', json={})

        assert response.status_code == 400

    def test_end_without_chat(self, client, scenario_id):
        client.post(f'/scenarios/{scenario_id}/advance')
        client.post(f'/scenarios/{scenario_id}/drill/complete')

        response = client.post(f'/scenarios/{scenario_id}/end')

        assert response.status_code == 400

    def test_chat_generation_failure_keeps_state(self, client, generator, scenario_id):
        client.post(f'/scenarios/{scenario_id}/advance')
        client.post(f'/scenarios/{scenario_id}/drill/complete')
        generator.fail_on.add('chat_turn')

        response = client.post(f'/scenarios/{scenario_id}/chat', json={'user_message': 'こんにちは'})

        assert response.status_code == 502
        scenario = client.get(f'/scenarios/{scenario_id}').get_json()['scenario']
        assert scenario['state'] == 'simulate'
        assert scenario['chat_history'] == []


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'


def test_unknown_route_is_json_404(client):
    response = client.get('/nowhere')

    assert response.status_code == 404
    assert response.get_json()['success'] is False
