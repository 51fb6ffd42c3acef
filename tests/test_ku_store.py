"""
Unit tests for the KU store and typed KU data.

Covers deterministic ids, idempotent upsert, facet creation and due queries.
"""

import sys
import os
import pytest
from datetime import timedelta

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from models import db
from models.knowledge_unit import KnowledgeUnit
from models.ku_data import KanjiData, VocabData, parse_ku_data
from models.review_facet import (
    FACET_CONTENT_TO_DEFINITION,
    FACET_CONTENT_TO_READING,
    FACET_STATUS_FLAGGED,
    ReviewFacet
)
from services.errors import ConcurrentModificationError, StoreFailure
from services.ku_store import KUStore, make_ku_id
from services.srs_scheduler import is_due, utcnow


@pytest.fixture(scope='function')
def app_context():
    """Create a fresh app context and database for each test"""
    app = create_app('testing')
    app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
    app.config['TESTING'] = True

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def store(app_context):
    return KUStore(db.session)


# ============================================================================
# KU ids and typed data
# ============================================================================

def test_make_ku_id_is_deterministic():
    assert make_ku_id('食べる', 'Vocab') == make_ku_id('食べる', 'Vocab')
    assert make_ku_id('食べる', 'Vocab').startswith('vocab-食べる-')


def test_make_ku_id_normalizes_whitespace():
    assert make_ku_id('  食べる ', 'Vocab') == make_ku_id('食べる', 'Vocab')


def test_make_ku_id_differs_by_type():
    assert make_ku_id('日', 'Kanji') != make_ku_id('日', 'Vocab')


def test_parse_ku_data_keeps_unknown_keys():
    data = parse_ku_data('Vocab', {'reading': 'たべる', 'definition': 'to eat', 'jlpt': 'N5'})

    assert isinstance(data, VocabData)
    assert data.reading == 'たべる'
    assert data.extra == {'jlpt': 'N5'}
    assert data.to_json() == {'reading': 'たべる', 'definition': 'to eat', 'jlpt': 'N5'}


def test_parse_ku_data_kanji_lists():
    data = parse_ku_data('Kanji', {'meaning': 'sun', 'onyomi': ['ニチ'], 'kunyomi': ['ひ']})

    assert isinstance(data, KanjiData)
    assert data.onyomi == ['ニチ']


def test_parse_ku_data_rejects_unknown_type():
    with pytest.raises(ValueError):
        parse_ku_data('Sticker', {})


def test_parse_ku_data_rejects_wrong_shape():
    with pytest.raises(ValueError):
        parse_ku_data('Kanji', {'onyomi': 'ニチ'})


# ============================================================================
# upsert_ku
# ============================================================================

def test_upsert_ku_creates_then_returns_existing(store):
    first, created_first = store.upsert_ku('食べる', 'Vocab', {'reading': 'たべる'})
    db.session.commit()
    second, created_second = store.upsert_ku('食べる', 'Vocab', {'reading': 'ignored'})

    assert created_first is True
    assert created_second is False
    assert first.id == second.id
    assert second.data == {'reading': 'たべる'}
    assert KnowledgeUnit.query.count() == 1


def test_upsert_ku_new_unit_defaults(store):
    ku, _ = store.upsert_ku('本屋', 'Vocab')

    assert ku.status == 'learning'
    assert ku.facet_count == 0
    assert ku.related_units == []


def test_upsert_ku_rejects_empty_content(store):
    with pytest.raises(ValueError):
        store.upsert_ku('   ', 'Vocab')


def test_ku_content_is_immutable(store):
    ku, _ = store.upsert_ku('本屋', 'Vocab')
    db.session.commit()

    with pytest.raises(ValueError):
        ku.content = '本'


# ============================================================================
# Facets
# ============================================================================

def test_create_facet_starts_at_stage_zero_and_due(store):
    ku, _ = store.upsert_ku('本屋', 'Vocab')

    facet = store.create_facet(ku.id, FACET_CONTENT_TO_DEFINITION)
    db.session.commit()

    assert facet.srs_stage == 0
    assert facet.status == 'active'
    assert facet.next_review_at <= utcnow()
    assert ku.facet_count == 1


def test_create_facet_for_missing_ku_raises(store):
    with pytest.raises(ValueError):
        store.create_facet('vocab-missing-00000000', FACET_CONTENT_TO_DEFINITION)


def test_find_facet_by_ku_and_type(store):
    ku, _ = store.upsert_ku('本屋', 'Vocab')
    facet = store.create_facet(ku.id, FACET_CONTENT_TO_READING)

    assert store.find_facet(ku.id, FACET_CONTENT_TO_READING).id == facet.id
    assert store.find_facet(ku.id, FACET_CONTENT_TO_DEFINITION) is None


def test_query_due_facets_only_active_and_due(store):
    now = utcnow()
    ku, _ = store.upsert_ku('本屋', 'Vocab')
    due = store.create_facet(ku.id, FACET_CONTENT_TO_DEFINITION)
    later = store.create_facet(ku.id, FACET_CONTENT_TO_READING)
    later.next_review_at = now + timedelta(days=1)
    other, _ = store.upsert_ku('駅', 'Vocab')
    flagged = store.create_facet(other.id, FACET_CONTENT_TO_DEFINITION)
    flagged.status = FACET_STATUS_FLAGGED
    db.session.commit()

    result = store.query_due_facets(now + timedelta(seconds=1))

    assert [f.id for f in result] == [due.id]
    assert all(is_due(f, now + timedelta(seconds=1)) for f in result)


# ============================================================================
# Units of work
# ============================================================================

def test_unit_of_work_rolls_back_on_error(store):
    with pytest.raises(RuntimeError):
        with store.unit_of_work('test'):
            store.upsert_ku('本屋', 'Vocab')
            raise RuntimeError('boom')

    assert KnowledgeUnit.query.count() == 0


def test_unit_of_work_translates_integrity_error(store):
    ku, _ = store.upsert_ku('本屋', 'Vocab')
    store.create_facet(ku.id, FACET_CONTENT_TO_DEFINITION)
    db.session.commit()

    with pytest.raises(StoreFailure):
        with store.unit_of_work('duplicate facet'):
            db.session.add(ReviewFacet(
                ku_id=ku.id,
                facet_type=FACET_CONTENT_TO_DEFINITION,
                srs_stage=0,
                next_review_at=utcnow(),
                history=[],
                status='active',
            ))

    assert ReviewFacet.query.count() == 1


def test_stale_facet_write_is_concurrent_modification(store):
    ku, _ = store.upsert_ku('本屋', 'Vocab')
    facet = store.create_facet(ku.id, FACET_CONTENT_TO_DEFINITION)
    db.session.commit()
    facet_id = facet.id
    assert facet.srs_stage == 0

    # Another writer bumps the version underneath us
    db.session.execute(
        db.text('UPDATE review_facets SET version_id = version_id + 1 WHERE id = :id'),
        {'id': facet_id}
    )

    with pytest.raises(ConcurrentModificationError):
        with store.unit_of_work('stale review'):
            facet.srs_stage = 1

    assert db.session.get(ReviewFacet, facet_id).srs_stage == 0


# ============================================================================
# Lost insert races
# ============================================================================

def miss_first_lookup(monkeypatch, store, method_name, key):
    """First lookup for ``key`` returns None, as if another writer had not committed yet"""
    real = getattr(store, method_name)
    missed = []

    def lookup(*args):
        if args[0] == key and not missed:
            missed.append(args)
            return None
        return real(*args)

    monkeypatch.setattr(store, method_name, lookup)
    return missed


def test_upsert_ku_returns_row_created_by_another_writer(store, monkeypatch):
    other_writer, _ = store.upsert_ku('食べる', 'Vocab', {'reading': 'たべる'})
    db.session.commit()
    ku_id = other_writer.id
    db.session.expunge_all()
    missed = miss_first_lookup(monkeypatch, store, 'get_ku', ku_id)

    with store.unit_of_work('concurrent upsert'):
        earlier, _ = store.upsert_ku('本屋', 'Vocab')
        ku, created = store.upsert_ku('食べる', 'Vocab', {'reading': 'ignored'})

    assert missed
    assert created is False
    assert ku.id == ku_id
    assert ku.data == {'reading': 'たべる'}
    # Only the failed insert was rolled back
    assert KnowledgeUnit.query.count() == 2


def test_ensure_facet_returns_facet_created_by_another_writer(store, monkeypatch):
    ku, _ = store.upsert_ku('本屋', 'Vocab')
    other_writer = store.create_facet(ku.id, FACET_CONTENT_TO_DEFINITION)
    db.session.commit()
    ku_id, facet_id = ku.id, other_writer.id
    db.session.expunge_all()
    missed = miss_first_lookup(monkeypatch, store, 'find_facet', ku_id)

    with store.unit_of_work('concurrent facet'):
        facet, created = store.ensure_facet(ku_id, FACET_CONTENT_TO_DEFINITION)

    assert missed
    assert created is False
    assert facet.id == facet_id
    assert ReviewFacet.query.count() == 1
    assert db.session.get(KnowledgeUnit, ku_id).facet_count == 1


def test_ensure_facet_existing_is_not_counted_twice(store):
    ku, _ = store.upsert_ku('本屋', 'Vocab')
    first, created_first = store.ensure_facet(ku.id, FACET_CONTENT_TO_READING)
    second, created_second = store.ensure_facet(ku.id, FACET_CONTENT_TO_READING)

    assert (created_first, created_second) == (True, False)
    assert first.id == second.id
    assert ku.facet_count == 1


def test_savepoint_insert_rolls_back_with_outer_unit_of_work(store):
    with pytest.raises(RuntimeError):
        with store.unit_of_work('test'):
            ku, _ = store.upsert_ku('本屋', 'Vocab')
            store.ensure_facet(ku.id, FACET_CONTENT_TO_READING)
            raise RuntimeError('boom')

    assert KnowledgeUnit.query.count() == 0
    assert ReviewFacet.query.count() == 0
