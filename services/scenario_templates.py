"""Built-in scenario themes offered when the learner does not type one"""

import random
from typing import Dict, List, Optional

SCENARIO_TEMPLATES: List[Dict] = [
    {
        'id': 'core-ordering-coffee',
        'title': 'Ordering Coffee',
        'description': 'Practice ordering a drink and a snack at a busy cafe.',
        'base_theme': 'Ordering coffee and a snack at a trendy cafe in Tokyo',
        'default_level': 'N5',
        'tags': ['Travel', 'Food'],
    },
    {
        'id': 'core-convenience-store',
        'title': 'Convenience Store Run',
        'description': 'Navigate the interaction at a Japanese Konbini.',
        'base_theme': 'Buying lunch and paying bills at a convenience store (Konbini)',
        'default_level': 'N5',
        'tags': ['Travel', 'Shopping'],
    },
    {
        'id': 'core-train-directions',
        'title': 'Asking for Directions',
        'description': 'Ask station staff for help navigating the train system.',
        'base_theme': 'Asking a station attendant for help with transfer to Shinjuku',
        'default_level': 'N5',
        'tags': ['Travel', 'Transport'],
    },
    {
        'id': 'core-restaurant-reservation',
        'title': 'Restaurant Reservation',
        'description': 'Call a restaurant to make a dinner reservation.',
        'base_theme': 'Calling a restaurant to book a table for 2 people for Friday night',
        'default_level': 'N4',
        'tags': ['Travel', 'Food'],
    },
    {
        'id': 'core-hotel-checkin',
        'title': 'Hotel Check-in',
        'description': 'Check in to your hotel and ask about amenities.',
        'base_theme': 'Checking in at a hotel front desk and asking about breakfast time',
        'default_level': 'N4',
        'tags': ['Travel', 'Accommodation'],
    },
    {
        'id': 'core-doctor-visit',
        'title': 'Visiting a Friendly Doctor',
        'description': 'Explain your symptoms to a doctor at a clinic.',
        'base_theme': 'Explaining cold symptoms (headache, fever) to a doctor at a clinic',
        'default_level': 'N3',
        'tags': ['Health', 'Emergency'],
    },
]


def get_template(template_id: str) -> Optional[Dict]:
    return next((t for t in SCENARIO_TEMPLATES if t['id'] == template_id), None)


def pick_template(difficulty: str, rng: Optional[random.Random] = None) -> Dict:
    """Random template for the level, or any template when none matches"""
    rng = rng or random
    matching = [t for t in SCENARIO_TEMPLATES if t['default_level'] == difficulty]
    return rng.choice(matching or SCENARIO_TEMPLATES)
