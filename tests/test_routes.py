"""End-to-end checks of the HTTP surface with an in-memory store."""

import pytest


def _sign_up(client, handle="reader"):
    resp = client.post("/auth/sign-up", json={"handle": handle, "password": "secret1"})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _draw(client, spread_id="three_cards", seed="fixed"):
    resp = client.post("/reading/draw", json={"spread_id": spread_id, "seed": seed})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _placements(drawn):
    return [
        {"card_id": c["cardId"], "position_id": c["positionId"], "is_reversed": c["isReversed"]}
        for c in drawn["cards"]
    ]


def _save(client, **extra):
    drawn = _draw(client)
    body = {"spread_id": "three_cards", "client_name": "Анна", "interpretation": "Толкование",
            "cards": _placements(drawn)}
    body.update(extra)
    return client.post("/reading/save", json=body)


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


class TestAuthRoutes:
    def test_sign_up_status_sign_out(self, client):
        assert client.get("/auth/status").json()["logged_in"] is False

        status = _sign_up(client)
        assert status["logged_in"] is True
        assert status["handle"] == "reader"

        assert client.post("/auth/sign-out").json()["logged_in"] is False

    def test_duplicate_handle(self, client):
        _sign_up(client)
        resp = client.post("/auth/sign-up", json={"handle": "reader", "password": "secret1"})
        assert resp.status_code == 400
        assert resp.json()["error"]["kind"] == "already_in_use"

    def test_empty_password_is_a_validation_error(self, client):
        resp = client.post("/auth/sign-in", json={"handle": "reader", "password": ""})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


class TestCatalogRoutes:
    def test_categories_hide_inactive(self, client):
        ids = {c["id"] for c in client.get("/catalog/categories").json()}
        assert ids == {"love", "career"}

    def test_questions_by_category(self, client):
        questions = client.get("/catalog/questions", params={"category_id": "love"}).json()
        assert {q["id"] for q in questions} == {"q1", "q2"}
        assert all(q["categoryId"] == "love" for q in questions)

    def test_submit_question(self, client):
        resp = client.post("/catalog/questions", json={"category_id": "love", "text": " Новый вопрос "})
        assert resp.status_code == 201
        body = resp.json()
        assert body["text"] == "Новый вопрос"
        assert body["isApproved"] is False

    def test_submit_question_unknown_category(self, client):
        resp = client.post("/catalog/questions", json={"category_id": "nope", "text": "Вопрос"})
        assert resp.status_code == 404

    def test_spreads_fall_back_to_bundle(self, client):
        body = client.get("/catalog/spreads").json()
        assert body["source"] == "bundle"
        assert body["errorMessage"] is None
        assert "three_cards" in {s["id"] for s in body["spreads"]}

    def test_cards(self, client):
        assert len(client.get("/catalog/cards").json()) == 78
        assert len(client.get("/catalog/cards", params={"suit": "cups"}).json()) == 14
        assert len(client.get("/catalog/cards", params={"major": "true"}).json()) == 22
        assert client.get("/catalog/cards/The Fool").json()["id"] == "major_00"
        assert client.get("/catalog/cards/nothing").status_code == 404


class TestReadingRoutes:
    def test_draw_is_reproducible_with_seed(self, client):
        first = _draw(client)
        second = _draw(client)
        assert first == second
        assert [c["positionName"] for c in first["cards"]] == ["Прошлое", "Настоящее", "Будущее"]

    def test_unknown_spread(self, client):
        resp = client.post("/reading/draw", json={"spread_id": "nope"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    def test_missing_spread_id(self, client):
        resp = client.post("/reading/draw", json={})
        assert resp.status_code == 400
        assert resp.json()["error"]["details"][0]["field"].endswith("spread_id")

    def test_interpret(self, client):
        drawn = _draw(client)
        resp = client.post("/reading/interpret", json={
            "spread_id": "three_cards", "client_name": "Анна", "cards": _placements(drawn),
        })
        assert resp.status_code == 200
        text = resp.json()["interpretation"]
        assert all(c["nameRu"] in text for c in drawn["cards"])

    def test_interpret_unknown_card(self, client):
        drawn = _draw(client)
        cards = _placements(drawn)
        cards[0]["card_id"] = "joker"
        resp = client.post("/reading/interpret", json={
            "spread_id": "three_cards", "client_name": "Анна", "cards": cards,
        })
        assert resp.status_code == 400

    def test_save_requires_sign_in(self, client, seeded_store):
        resp = _save(client)
        assert resp.status_code == 401
        assert seeded_store.writes == []

    def test_save_with_question(self, client):
        _sign_up(client)
        resp = _save(client, question_category_id="love", question_id="q1", session_id="S1")
        assert resp.status_code == 201
        assert resp.json() == {"sessionId": "S1"}

        session = client.get("/sessions/S1").json()
        assert session["questionText"] == "Что он чувствует?"
        assert session["questionCategoryName"] == "Любовь"
        assert session["shareText"].startswith("Сессия гадания для Анна")

    def test_save_rejects_duplicate_positions(self, client, seeded_store):
        _sign_up(client)
        cards = _placements(_draw(client))
        cards[2]["position_id"] = cards[0]["position_id"]
        resp = client.post("/reading/save", json={
            "spread_id": "three_cards", "client_name": "Анна", "interpretation": "Толкование", "cards": cards,
        })
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_READING"
        assert seeded_store.writes == []

    def test_save_without_interpretation_generates_one(self, client):
        _sign_up(client)
        cards = _placements(_draw(client))
        resp = client.post("/reading/save", json={
            "spread_id": "three_cards", "client_name": "Анна", "session_id": "S2", "cards": cards,
        })
        assert resp.status_code == 201
        assert "Прошлое" in client.get("/sessions/S2").json()["interpretation"]

    def test_save_unknown_question(self, client):
        _sign_up(client)
        assert _save(client, question_id="missing").status_code == 404

    def test_offline_store_reports_retryable_error(self, client, seeded_store):
        _sign_up(client)
        seeded_store.offline = True
        resp = _save(client, session_id="S1")
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "WRITE_FAILED"


class TestSessionRoutes:
    def test_requires_sign_in(self, client):
        assert client.get("/sessions").status_code == 401

    def test_manage_session(self, client):
        _sign_up(client)
        _save(client, session_id="S1", custom_question="Что дальше?")

        listed = client.get("/sessions").json()
        assert [s["id"] for s in listed] == ["S1"]
        assert listed[0]["shortDescription"] == "Расклад на три карты - Что дальше?"

        assert client.post("/sessions/S1/sent").json() == {"id": "S1", "isSent": True}
        renamed = client.patch("/sessions/S1/client", json={"client_name": " Мария "})
        assert renamed.json()["clientName"] == "Мария"

        session = client.get("/sessions/S1").json()
        assert session["isSent"] is True
        assert session["clientName"] == "Мария"

        assert client.delete("/sessions/S1").json() == {"id": "S1", "deleted": True}
        assert client.get("/sessions/S1").status_code == 404
        assert client.delete("/sessions/S1").status_code == 200

    def test_replace_session(self, client):
        _sign_up(client)
        _save(client, session_id="S1")
        session = client.get("/sessions/S1").json()
        session["interpretation"] = "Исправленное толкование"

        resp = client.put("/sessions/S1", json=session)
        assert resp.status_code == 200
        assert client.get("/sessions/S1").json()["interpretation"] == "Исправленное толкование"

    @pytest.mark.parametrize("field", ["date", "drawnCards", "isSent"])
    def test_replace_requires_every_field(self, client, field):
        _sign_up(client)
        _save(client, session_id="S1")
        before = client.get("/sessions/S1").json()
        body = dict(before)
        body.pop(field)

        resp = client.put("/sessions/S1", json=body)
        assert resp.status_code == 400
        after = client.get("/sessions/S1").json()
        assert after["date"] == before["date"]
        assert len(after["drawnCards"]) == 3

    def test_replace_keeps_cards_matching_spread(self, client):
        _sign_up(client)
        _save(client, session_id="S1")
        body = client.get("/sessions/S1").json()
        body["drawnCards"] = body["drawnCards"][:1]
        assert client.put("/sessions/S1", json=body).status_code == 400

    def test_replace_with_incomplete_body(self, client):
        _sign_up(client)
        _save(client, session_id="S1")
        resp = client.put("/sessions/S1", json={"clientName": "Анна"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_READING"

    def test_mark_missing_session(self, client):
        _sign_up(client)
        assert client.post("/sessions/missing/sent").status_code == 404


class TestProfileRoutes:
    def test_subscription_flow(self, client):
        assert client.get("/profile/subscription").json() == {"isSubscribed": False}
        assert client.post("/profile/subscription").status_code == 401

        _sign_up(client)
        assert client.post("/profile/subscription").json() == {"isSubscribed": True}
        assert client.get("/profile/subscription").json() == {"isSubscribed": True}
        assert client.delete("/profile/subscription").json() == {"isSubscribed": False}


@pytest.mark.parametrize("path", ["/sessions", "/sessions/S1"])
def test_unauthenticated_body(client, path):
    body = client.get(path).json()
    assert body["error"]["code"] == "UNAUTHENTICATED"
