"""Tests for the HTTP surface via FastAPI TestClient over in-memory collaborators."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from app.core.schemas_answers import SimilarAnswer, SimilarQuestion
from app.core.schemas_questionnaires import Questionnaire, QuestionnaireState
from app.main import app
from tests.fakes.fake_llm import FakeRetriever


@pytest.fixture
def client(engine):
    app.state.engine = engine
    with TestClient(app) as test_client:
        yield test_client
    app.state.engine = None


def _seed_questionnaire(engine, state=QuestionnaireState.COMPLETED, answers=None, name="Seeded"):
    answers = answers if answers is not None else {"Q1?": "A1", "Q2?": "A2"}
    questionnaire = Questionnaire(name=name, text="...", questions=list(answers), state=state)

    async def _seed():
        await engine.questionnaire_repo.save(questionnaire)
        return await engine.answer_repo.batch_create(
            answers, questionnaire_id=questionnaire.id, emit_events=False
        )

    return questionnaire, asyncio.run(_seed())


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestQuestionnaireEndpoints:
    def test_create(self, client):
        response = client.post(
            "/v1/questionnaires",
            json={"text": "Do you support SSO?", "name": "Acme RFI", "type": "rfp"},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["name"] == "Acme RFI"
        assert body["type"] == "rfp"
        assert body["customer_type"] == "other"
        assert body["state"] == "loaded"

    @pytest.mark.parametrize(
        "payload",
        [
            {"text": "Q?", "name": "bad/name"},
            {"text": "", "name": "Acme"},
            {"text": "Q?", "name": "Acme", "type": "poem"},
            {"text": "Q?", "name": "Acme", "customer_type": "alien"},
        ],
    )
    def test_create_validation_errors(self, client, payload):
        response = client.post("/v1/questionnaires", json=payload)
        assert response.status_code == 400

    def test_create_duplicate_name(self, client):
        client.post("/v1/questionnaires", json={"text": "Q?", "name": "Acme"})
        response = client.post("/v1/questionnaires", json={"text": "Q?", "name": "Acme"})
        assert response.status_code == 400
        assert "already exists" in response.json()["detail"]

    def test_get(self, client, engine):
        questionnaire, _ = _seed_questionnaire(engine)

        response = client.get(f"/v1/questionnaires/{questionnaire.id}")

        assert response.status_code == 200
        assert response.json()["state"] == "completed"
        assert response.json()["total_answers_approved"] == 0

    def test_get_missing(self, client):
        assert client.get("/v1/questionnaires/missing").status_code == 404

    def test_get_by_name(self, client, engine):
        questionnaire, _ = _seed_questionnaire(engine, name="Named one")

        response = client.get("/v1/questionnaires/by-name/Named one")
        assert response.status_code == 200
        assert response.json()["id"] == questionnaire.id
        assert client.get("/v1/questionnaires/by-name/Named").status_code == 404

    def test_list_and_search(self, client, engine):
        _seed_questionnaire(engine, name="Acme 1", answers={})
        _seed_questionnaire(engine, name="Acme 2", answers={})
        _seed_questionnaire(engine, name="Other", answers={})

        listed = client.get("/v1/questionnaires").json()
        assert len(listed["questionnaires"]) == 3
        assert listed["next_cursor"] is None

        searched = client.get("/v1/questionnaires", params={"name": "Acme"}).json()
        assert sorted(q["name"] for q in searched["questionnaires"]) == ["Acme 1", "Acme 2"]

    def test_list_answers(self, client, engine):
        questionnaire, _ = _seed_questionnaire(engine)

        response = client.get(f"/v1/questionnaires/{questionnaire.id}/answers")

        assert response.status_code == 200
        assert [a["question"] for a in response.json()] == ["Q1?", "Q2?"]

    def test_list_answers_missing_questionnaire(self, client):
        assert client.get("/v1/questionnaires/missing/answers").status_code == 404

    def test_approve(self, client, engine):
        questionnaire, _ = _seed_questionnaire(engine)

        response = client.post(f"/v1/questionnaires/{questionnaire.id}/approve")

        assert response.status_code == 200
        assert response.json()["total_answers_approved"] == 2
        assert response.json()["approved_at"] is not None
        answers = client.get(f"/v1/questionnaires/{questionnaire.id}/answers").json()
        assert {a["approval"] for a in answers} == {"approved"}

    def test_delete_rules(self, client, engine):
        questionnaire, _ = _seed_questionnaire(engine, state=QuestionnaireState.ANSWERING)

        refused = client.delete(f"/v1/questionnaires/{questionnaire.id}")
        assert refused.status_code == 409

        forced = client.delete(
            f"/v1/questionnaires/{questionnaire.id}",
            params={"force": "true", "remove_answers": "true"},
        )
        assert forced.status_code == 200
        assert forced.json() == {"questionnaire_id": questionnaire.id, "answers_removed": 2}
        assert client.get(f"/v1/questionnaires/{questionnaire.id}").status_code == 404

    def test_delete_missing(self, client):
        assert client.delete("/v1/questionnaires/missing").status_code == 404


class TestAnswerEndpoints:
    def test_get_and_patch(self, client, engine):
        _, [answer, _] = _seed_questionnaire(engine)

        assert client.get(f"/v1/answers/{answer.id}").json()["answer"] == "A1"

        response = client.patch(
            f"/v1/answers/{answer.id}", json={"answer": "Edited", "approval": "rejected"}
        )
        assert response.status_code == 200
        assert response.json()["answer"] == "Edited"
        assert response.json()["approval"] == "rejected"

    def test_get_missing(self, client):
        assert client.get("/v1/answers/missing").status_code == 404

    def test_patch_rejects_unknown_approval(self, client, engine):
        _, [answer, _] = _seed_questionnaire(engine)
        response = client.patch(f"/v1/answers/{answer.id}", json={"approval": "maybe"})
        assert response.status_code == 422

    def test_approve(self, client, engine):
        _, [answer, _] = _seed_questionnaire(engine)

        response = client.post(f"/v1/answers/{answer.id}/approve")

        assert response.status_code == 200
        assert response.json()["approval"] == "approved"

    def test_reprocess(self, client, engine):
        _, [answer, _] = _seed_questionnaire(engine)

        response = client.post(f"/v1/answers/{answer.id}/reprocess")

        assert response.status_code == 200
        assert response.json()["answer"] == "Answer: Q1?"

    def test_reprocess_failure_is_bad_gateway(self, client, engine, generator):
        _, [answer, _] = _seed_questionnaire(engine)
        generator.skip = {"Q1?"}

        response = client.post(f"/v1/answers/{answer.id}/reprocess")

        assert response.status_code == 502
        assert client.get(f"/v1/answers/{answer.id}").json()["answer"] == "A1"

    def test_similar(self, client, engine):
        engine.retriever = FakeRetriever(
            [
                SimilarQuestion(
                    question="SSO?",
                    neighbors=[SimilarAnswer(question="Do you support SSO?", answer="Yes", distance=0.9)],
                )
            ]
        )

        response = client.post("/v1/answers/similar", json={"questions": ["  ?SSO?"]})

        assert response.status_code == 200
        assert engine.retriever.calls == [["SSO?"]]
        assert response.json()[0]["neighbors"][0]["answer"] == "Yes"

    def test_similar_without_retriever(self, client):
        response = client.post("/v1/answers/similar", json={"questions": ["SSO?"]})
        assert response.status_code == 400

    def test_similar_requires_questions(self, client):
        response = client.post("/v1/answers/similar", json={"questions": []})
        assert response.status_code == 422
