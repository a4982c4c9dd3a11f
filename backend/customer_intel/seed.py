from datetime import datetime, timedelta
from random import choice, randint, random, sample, uniform
import logging
import re
from typing import List, Set

from faker import Faker

from .schemas import SeatLicense, UsageEventIn
from .service import CustomerIntelligence

fake = Faker()
logger = logging.getLogger(__name__)

COMPANY_COUNT = 20
HISTORY_DAYS = 90
PERSONAS = ["power", "steady", "spiky", "frugal", "churning"]
FEATURES = [
    "dashboards", "reports", "alerts", "exports", "api_keys", "workflows",
    "integrations", "sso", "audit_log", "forecasting", "advanced_analytics",
    "premium_templates",
]
ONBOARDING_STEPS = [
    "profile_update", "feature_use", "data_import", "team_invite",
    "integration_setup", "workflow_create", "report_generate", "advanced_feature",
]


def _company_id(name: str, taken: Set[str]) -> str:
    """Slug of the company name, unique within this seeding run."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    while slug in taken:
        slug = f"{slug}-{randint(10, 99)}"
    taken.add(slug)
    return slug


def _persona_params(persona: str) -> dict:
    """
    Probabilities / rates that control event generation.
    power: heavy usage, many users, premium interest
    steady: moderate/consistent
    spiky: bursty API, mixed logins
    frugal: low usage/adoption
    churning: activity fading over the window
    """
    return {
        "power":    dict(p_active=0.95, users=(8, 14), feat_pool=(8, 12), feat_daily=(2, 5),
                         p_api=0.6, api_daily=(1, 4), p_premium=0.08, fade=False),
        "steady":   dict(p_active=0.8,  users=(4, 9),  feat_pool=(5, 8),  feat_daily=(1, 3),
                         p_api=0.3, api_daily=(0, 2), p_premium=0.02, fade=False),
        "spiky":    dict(p_active=0.5,  users=(3, 8),  feat_pool=(4, 8),  feat_daily=(0, 6),
                         p_api=0.25, api_daily=(2, 8), p_premium=0.03, fade=False),
        "frugal":   dict(p_active=0.35, users=(1, 4),  feat_pool=(2, 5),  feat_daily=(0, 1),
                         p_api=0.1, api_daily=(0, 1), p_premium=0.0, fade=False),
        "churning": dict(p_active=0.7,  users=(2, 6),  feat_pool=(3, 6),  feat_daily=(1, 3),
                         p_api=0.15, api_daily=(0, 2), p_premium=0.0, fade=True),
    }[persona]


def _users(count: int) -> List[str]:
    return [fake.unique.user_name() for _ in range(count)]


def _event(company_id: str, event_type: str, ts: datetime, user: str, feature: str = None) -> UsageEventIn:
    return UsageEventIn(
        company_id=company_id,
        event_type=event_type,
        feature_name=feature,
        timestamp=ts,
        metadata={"userId": user},
    )


def _history(company_id: str, persona: str, now: datetime) -> List[UsageEventIn]:
    P = _persona_params(persona)
    users = _users(randint(*P["users"]))
    features = sample(FEATURES, k=min(len(FEATURES), randint(*P["feat_pool"])))
    adopt_p = uniform(0.5, 0.95)
    adopted: Set[str] = {f for f in features if random() < adopt_p} or {features[0]}

    events: List[UsageEventIn] = []
    day = now - timedelta(days=HISTORY_DAYS - 1)
    last_day = now - timedelta(days=1)
    while day <= last_day:
        days_ago = (now - day).days
        p_active = P["p_active"]
        if P["fade"]:
            # churning accounts lose activity as the window approaches today
            p_active *= days_ago / HISTORY_DAYS

        if random() < p_active:
            for user in sample(users, k=randint(1, len(users))):
                ts = day.replace(hour=randint(7, 19), minute=randint(0, 59))
                events.append(_event(company_id, "login", ts, user))
                for _ in range(randint(*P["feat_daily"])):
                    events.append(_event(company_id, "feature_use", ts + timedelta(minutes=randint(1, 120)),
                                         user, choice(sorted(adopted))))

            if random() < P["p_api"]:
                for _ in range(randint(*P["api_daily"])):
                    events.append(_event(company_id, "api_call", day.replace(hour=randint(0, 23)),
                                         choice(users), "api"))

            if random() < P["p_premium"]:
                events.append(_event(company_id, choice(["premium_preview", "upgrade_viewed", "trial_started"]),
                                     day.replace(hour=randint(9, 17)), choice(users), "premium_templates"))
        day += timedelta(days=1)
    return events


def _onboarding(company_id: str, start: datetime, users: List[str], now: datetime) -> List[UsageEventIn]:
    """A fresh account working through the first onboarding steps, up to `now`."""
    steps = ONBOARDING_STEPS[: randint(2, len(ONBOARDING_STEPS))]
    events = [_event(company_id, "login", start + timedelta(hours=1), users[0])]
    for i, step in enumerate(steps, start=1):
        events.append(_event(company_id, step, start + timedelta(days=i * randint(1, 3)), choice(users)))
    return [e for e in events if e.timestamp <= now]


def seed_if_needed(intel: CustomerIntelligence) -> int:
    """Seed demo companies unless the store already has some. Returns companies created."""
    if intel.list_company_ids():
        logger.info("Event store already populated; skipping seed")
        return 0

    now = intel.clock()
    taken: Set[str] = set()
    created = 0

    for _ in range(COMPANY_COUNT):
        company_id = _company_id(fake.company(), taken)
        persona = choice(PERSONAS)

        if random() < 0.2:
            # recently signed: onboarding in progress
            start = now - timedelta(days=randint(3, 28))
            intel.set_onboarding_start_date(company_id, start)
            payloads = _onboarding(company_id, start, _users(randint(1, 4)), now)
        else:
            payloads = _history(company_id, persona, now)

        if not payloads:
            continue
        intel.record_events(payloads)
        intel.set_seat_data(company_id, SeatLicense(
            licensed_seats=choice([5, 10, 15, 25, 50]),
            metadata={"plan": choice(["starter", "growth", "enterprise"]), "persona": persona},
        ))
        created += 1

    logger.info("Seeded %d demo companies", created)
    return created
