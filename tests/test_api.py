import asyncio

import aiosqlite
import httpx
import pytest

from novastudy import create_app
from novastudy.db import init_all_databases
from novastudy.db.sqlite import claim_active_session, get_db
from novastudy.models.flashcard import Quality

from tests.conftest import USER

OTHER = {"X-User-Id": "student-2"}


def _make_set(client, headers, title="Biology", questions=("Cell?", "DNA?")):
    res = client.post("/sets", json={"title": title}, headers=headers)
    assert res.status_code == 201
    set_id = res.json()["id"]
    for q in questions:
        res = client.post(
            f"/sets/{set_id}/cards", json={"question": q, "answer": f"{q} answer"}, headers=headers
        )
        assert res.status_code == 201
    return set_id


def _open(client, headers, *set_ids):
    return client.post(
        "/study/sessions", json={"set_ids": list(set_ids), "shuffle": False}, headers=headers
    )


def _rate(client, headers, session_id, card_id, quality, **params):
    return client.post(
        f"/study/sessions/{session_id}/rate",
        json={"card_id": card_id, "quality": int(quality)},
        params=params,
        headers=headers,
    )


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_need_user_header(client):
    assert client.get("/sets").status_code == 401
    assert client.get("/sets", headers={"X-User-Id": "  "}).status_code == 401


def test_sets_and_cards(client, headers):
    set_id = _make_set(client, headers)

    listing = client.get("/sets", headers=headers).json()
    assert listing["total"] == 1
    assert listing["items"][0]["user_id"] == USER

    detail = client.get(f"/sets/{set_id}", headers=headers).json()
    assert len(detail["flashcards"]) == 2
    assert detail["mastery_percentage"] == 0
    card = detail["flashcards"][0]
    assert card["due_date"] is None
    assert card["interval"] is None

    res = client.patch(f"/cards/{card['id']}", json={"answer": "Membrane"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["answer"] == "Membrane"
    assert client.patch(f"/cards/{card['id']}", json={"question": " "}, headers=headers).status_code == 422

    assert client.delete(f"/cards/{card['id']}", headers=headers).status_code == 204
    assert client.get(f"/cards/{card['id']}", headers=headers).status_code == 404
    assert client.get(f"/sets/{set_id}/mastery", headers=headers).json()["total_cards"] == 1


def test_other_users_are_forbidden(client, headers):
    set_id = _make_set(client, headers)
    card_id = client.get(f"/sets/{set_id}", headers=headers).json()["flashcards"][0]["id"]

    assert client.get(f"/sets/{set_id}", headers=OTHER).status_code == 403
    assert client.get(f"/cards/{card_id}", headers=OTHER).status_code == 403
    assert client.post(f"/cards/{card_id}/review", json={"quality": 3}, headers=OTHER).status_code == 403
    assert client.get("/sets/missing", headers=headers).status_code == 404


def test_due_cards_across_sets(client, headers):
    bio = _make_set(client, headers, "Biology", ("Cell?",))
    hist = _make_set(client, headers, "History", ("1066?",))

    res = client.get("/cards/due", params={"set_id": [bio, hist]}, headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 2
    assert body["set_titles"] == {bio: "Biology", hist: "History"}
    assert {c["set_title"] for c in body["items"]} == {"Biology", "History"}

    assert client.get("/cards/due", headers=headers).status_code == 422


def test_single_card_review(client, headers):
    set_id = _make_set(client, headers, questions=("Cell?",))
    card_id = client.get(f"/sets/{set_id}", headers=headers).json()["flashcards"][0]["id"]

    assert client.post(f"/cards/{card_id}/review", json={"quality": 4}, headers=headers).status_code == 422

    first = client.post(f"/cards/{card_id}/review", json={"quality": 3}, headers=headers).json()
    assert (first["interval"], first["repetitions"]) == (1, 1)
    second = client.post(f"/cards/{card_id}/review", json={"quality": 3}, headers=headers).json()
    assert (second["interval"], second["repetitions"]) == (6, 2)

    due = client.get("/cards/due", params={"set_id": set_id}, headers=headers).json()
    assert due["total"] == 0


def test_study_session_flow(client, headers):
    set_id = _make_set(client, headers)

    res = _open(client, headers, set_id)
    assert res.status_code == 201
    view = res.json()
    session_id = view["id"]
    assert view["state"] == "ready"
    assert view["total"] == 2
    assert view["set_titles"] == {set_id: "Biology"}
    first_id = view["current"]["id"]

    assert _rate(client, headers, session_id, "not-current", Quality.GOOD).status_code == 422

    res = _rate(client, headers, session_id, first_id, Quality.EASY)
    assert res.status_code == 200
    body = res.json()
    assert body["outcome"] == "rated"
    assert body["scheduling"]["interval"] == 1
    assert body["summary"] is None
    assert body["session"]["position"] == 1

    view = client.get(f"/study/sessions/{session_id}", headers=headers).json()
    assert view["state"] == "reviewing"
    assert view["rated_count"] == 1
    second_id = view["current"]["id"]
    assert second_id != first_id

    prev = client.post(
        f"/study/sessions/{session_id}/navigate", json={"direction": "prev"}, headers=headers
    ).json()
    assert prev["current"]["id"] == first_id
    client.post(f"/study/sessions/{session_id}/navigate", json={"direction": "next"}, headers=headers)

    body = _rate(client, headers, session_id, second_id, Quality.AGAIN).json()
    assert body["session"]["state"] == "closed"
    summary = body["summary"]
    assert summary["set_id"] == set_id
    assert summary["cards_reviewed"] == 2
    assert summary["performance_snapshot"] == {"again": 1, "hard": 0, "good": 0, "easy": 1}
    assert summary["mastery_at_session_end"] == 0
    assert body["report"] is None

    assert client.get(f"/study/sessions/{session_id}", headers=headers).status_code == 404

    history = client.get("/study/history", headers=headers).json()
    assert history["total"] == 1
    assert history["items"][0]["id"] == summary["id"]
    assert client.get("/study/history", params={"set_id": "other"}, headers=headers).json()["total"] == 0


def test_session_belongs_to_its_user(client, headers):
    set_id = _make_set(client, headers)
    session_id = _open(client, headers, set_id).json()["id"]
    assert client.get(f"/study/sessions/{session_id}", headers=OTHER).status_code == 403


def test_nothing_due_opens_no_session(client, headers):
    set_id = _make_set(client, headers)

    res = _open(client, headers, set_id)
    assert res.status_code == 201
    assert _open(client, OTHER, set_id).json()["state"] == "empty"

    empty = client.post("/sets", json={"title": "Empty"}, headers=headers).json()["id"]
    res = _open(client, headers, empty)
    assert res.status_code == 200
    assert res.json()["id"] is None
    assert res.json()["state"] == "empty"

    assert _open(client, headers).status_code == 422


def test_abandon_session(client, headers):
    set_id = _make_set(client, headers)
    view = _open(client, headers, set_id).json()
    _rate(client, headers, view["id"], view["current"]["id"], Quality.GOOD)

    assert client.delete(f"/study/sessions/{view['id']}", headers=headers).status_code == 204
    assert client.get(f"/study/sessions/{view['id']}", headers=headers).status_code == 404
    assert client.get("/study/history", headers=headers).json()["total"] == 0

    card = client.get(f"/cards/{view['current']['id']}", headers=headers).json()
    assert card["repetitions"] == 0
    assert card["interval"] == 1


def test_complete_early_with_report(client, headers, monkeypatch):
    from novastudy.routers import study

    calls = []

    async def fake_report(set_titles, performance, grade_level):
        calls.append((set_titles, [p.card_id for p in performance], grade_level))
        return "## Keep going"

    monkeypatch.setattr(study, "generate_study_report", fake_report)
    client.put("/profile/", json={"grade_level": "9th grade"}, headers=headers)

    set_id = _make_set(client, headers, questions=("Cell?", "DNA?", "RNA?"))
    view = _open(client, headers, set_id).json()
    first_id = view["current"]["id"]
    _rate(client, headers, view["id"], first_id, Quality.HARD)

    res = client.post(
        f"/study/sessions/{view['id']}/complete", params={"generate_report": True}, headers=headers
    )
    assert res.status_code == 200
    body = res.json()
    assert body["outcome"] == "committed"
    assert body["summary"]["cards_reviewed"] == 1
    assert body["report"] == "## Keep going"
    assert calls == [(["Biology"], [first_id], "9th grade")]

    assert client.post(f"/study/sessions/{view['id']}/complete", headers=headers).status_code == 404


def test_profile(client, headers):
    assert client.get("/profile/", headers=headers).json() == {"user_id": USER, "grade_level": None}
    res = client.put("/profile/", json={"grade_level": " 7th grade "}, headers=headers)
    assert res.json()["grade_level"] == "7th grade"
    assert client.get("/profile/", headers=OTHER).json()["grade_level"] is None


def test_concurrent_rates_count_once(tmp_path, headers):
    async def scenario():
        await init_all_databases(tmp_path)
        transport = httpx.ASGITransport(app=create_app())
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            set_id = (await ac.post("/sets", json={"title": "Biology"}, headers=headers)).json()["id"]
            for q in ("Cell?", "DNA?"):
                await ac.post(f"/sets/{set_id}/cards", json={"question": q, "answer": "A"}, headers=headers)
            view = (
                await ac.post(
                    "/study/sessions", json={"set_ids": [set_id], "shuffle": False}, headers=headers
                )
            ).json()
            card_id = view["current"]["id"]
            rate = {"card_id": card_id, "quality": int(Quality.EASY)}
            responses = await asyncio.gather(
                ac.post(f"/study/sessions/{view['id']}/rate", json=rate, headers=headers),
                ac.post(f"/study/sessions/{view['id']}/rate", json=rate, headers=headers),
            )
            after = (await ac.get(f"/study/sessions/{view['id']}", headers=headers)).json()
            card = (await ac.get(f"/cards/{card_id}", headers=headers)).json()
        return [r.status_code for r in responses], after, card

    statuses, after, card = asyncio.run(scenario())
    assert sorted(statuses) in ([200, 409], [200, 422])
    assert after["rated_count"] == 1
    assert after["position"] == 1
    assert card["repetitions"] == 1


def test_busy_session_rejects_other_requests(client, headers):
    set_id = _make_set(client, headers)
    view = _open(client, headers, set_id).json()

    async def hold():
        async for db in get_db():
            return await claim_active_session(db, view["id"], 1, 30)

    assert asyncio.run(hold())
    res = _rate(client, headers, view["id"], view["current"]["id"], Quality.EASY)
    assert res.status_code == 409
    nav = client.post(
        f"/study/sessions/{view['id']}/navigate", json={"direction": "next"}, headers=headers
    )
    assert nav.status_code == 409
    assert client.get(f"/study/sessions/{view['id']}", headers=headers).json()["rated_count"] == 0


def test_rejected_rating_releases_the_session(client, headers):
    set_id = _make_set(client, headers)
    view = _open(client, headers, set_id).json()

    assert _rate(client, headers, view["id"], "not-current", Quality.GOOD).status_code == 422
    res = _rate(client, headers, view["id"], view["current"]["id"], Quality.GOOD)
    assert res.status_code == 200
    assert res.json()["outcome"] == "rated"


def test_closed_session_is_stored_before_report(client, headers, monkeypatch):
    from novastudy.routers import study

    async def broken_profile(db, user_id):
        raise aiosqlite.OperationalError("disk I/O error")

    monkeypatch.setattr(study, "get_profile", broken_profile)
    set_id = _make_set(client, headers, questions=("Cell?",))
    view = _open(client, headers, set_id).json()
    card_id = view["current"]["id"]

    with pytest.raises(aiosqlite.OperationalError):
        _rate(client, headers, view["id"], card_id, Quality.EASY, generate_report=True)

    assert client.get(f"/study/sessions/{view['id']}", headers=headers).status_code == 404
    assert _rate(client, headers, view["id"], card_id, Quality.EASY).status_code == 404
    assert client.get("/study/history", headers=headers).json()["total"] == 1
    assert client.get(f"/cards/{card_id}", headers=headers).json()["repetitions"] == 1
