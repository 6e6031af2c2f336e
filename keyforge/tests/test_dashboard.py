"""Tests for the dashboard overview."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import insert, update

from keyforge.core.database import collection_links, get_db_session, hwid_resets, projects
from keyforge.features.collections.service import link_collection
from keyforge.features.dashboard.service import fmt_delta_pct, local_day_range, overview
from keyforge.features.projects.service import create_project
from keyforge.tests.mocks import mongo_integration

URI = "mongodb://owner-host/"
# 2026-06-10 02:00 UTC is still 2026-06-09 in UTC-3
NOW = datetime(2026, 6, 10, 2, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "current,previous,expected",
    [(3, 0, "+100%"), (0, 0, ""), (2, 2, ""), (3, 2, "+50%"), (1, 2, "-50%"), (1001, 1000, "")],
)
def test_fmt_delta_pct(current, previous, expected):
    assert fmt_delta_pct(current, previous) == expected


def test_local_day_range_uses_offset():
    start, end = local_day_range(NOW)
    assert start == datetime(2026, 6, 9, 3, 0, tzinfo=timezone.utc)
    assert end == start + timedelta(days=1) - timedelta(microseconds=1)


def _backdate(project_id, when):
    with get_db_session() as session:
        session.execute(update(projects).where(projects.c.id == project_id).values(created_at=when))
        session.execute(update(collection_links).where(collection_links.c.project_id == project_id).values(created_at=when))


def test_overview_counts(make_user, mongo):
    mongo.deployment(URI).seed("shop", "licenses", [{"key": "A"}, {"key": "B"}, {"key": "C"}])
    owner = make_user(plan="empresarial", integrations=[mongo_integration("main", URI)])
    client = make_user(plan="client", email="buyer@example.com")

    old = create_project(owner, "Antigo", client_email="buyer@example.com")
    new = create_project(owner, "Novo")
    link_collection(owner, "main-shop-licenses", old["id"])
    _backdate(old["id"], NOW - timedelta(days=3))

    with get_db_session() as session:
        session.execute(insert(hwid_resets).values(user_id=owner.id, project_id=old["id"], collection_id="main-shop-licenses", created_at=NOW - timedelta(hours=1)))
        # previous local day
        session.execute(insert(hwid_resets).values(user_id=owner.id, project_id=old["id"], collection_id="main-shop-licenses", created_at=NOW - timedelta(hours=24)))

    data = overview(owner, now=NOW)
    assert data["role"] == "empresarial"
    assert data["projectsTotal"] == 2
    assert data["collectionsTotal"] == 1
    assert data["keysActiveTotal"] == 3
    assert data["resetsToday"] == 1
    assert data["linkedClientsTotal"] == 1
    assert data["deltas"]["projects"] == "+100%"
    assert data["deltas"]["collections"] == ""
    assert data["giveaways"] == []
    assert data["announcements"]

    client_view = overview(client, now=NOW)
    assert client_view["role"] == "client"
    assert client_view["projectsTotal"] == 1
    assert client_view["keysActiveTotal"] == 3
    assert client_view["linkedClientsTotal"] == 0
    assert new["id"] != old["id"]


def test_overview_with_unreachable_integration(make_user, mongo):
    owner = make_user(plan="empresarial", integrations=[mongo_integration("main", "mongodb://down/")])
    project = create_project(owner, "P")
    link_collection(owner, "main-shop-licenses", project["id"])

    data = overview(owner)
    assert data["keysActiveTotal"] == 0
    assert data["collectionsTotal"] == 1
