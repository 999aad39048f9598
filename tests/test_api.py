import pytest
from fastapi.testclient import TestClient

import main
from errors import ScraperFailed
from persistence import QuizPersister, QuizRepository
from pipeline import GenerationOrchestrator
from fakes import BIOLOGY_CARDS, FakeGenerator, FakeScraper, row_counts, studiable_payload

SET_URL = "https://platform.example/123456789/biology-flash-cards/"
API_URL = "https://platform.example/webapi/3.4/studiable-item-documents?filters%5BstudiableContainerId%5D=123456789"
ALICE = {"X-User-Id": "alice"}


class Services:
    """What the dependency overrides hand to the app; tests swap pieces per scenario."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.scraper = FakeScraper()
        self.generator = FakeGenerator()
        self.regenerator = FakeGenerator(tag="fresh")
        self.ai_timeout = 5.0

    def orchestrator(self):
        return GenerationOrchestrator(
            scraper=self.scraper, generator=self.generator,
            persister=QuizPersister(self.session_factory),
            mode="batch", ai_timeout=self.ai_timeout, host="platform.example",
        )


@pytest.fixture
def services(session_factory):
    return Services(session_factory)


@pytest.fixture
def client(services):
    main.app.dependency_overrides[main.get_orchestrator] = services.orchestrator
    main.app.dependency_overrides[main.get_repository] = lambda: QuizRepository(services.session_factory)
    main.app.dependency_overrides[main.get_generator] = lambda: services.regenerator
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def generate(client, **body):
    body.setdefault("source_url", SET_URL)
    return client.post("/api/generate", json=body, headers=ALICE)


def question_shape(client, quiz_id):
    quiz = client.get(f"/api/quizzes/{quiz_id}", headers=ALICE).json()
    return [
        (q["question_text"], [a["answer_text"] for a in q["answers"] if a["is_correct"]])
        for q in quiz["questions"]
    ]


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_generate_happy_path(client, services):
    resp = generate(client)

    assert resp.status_code == 201
    assert resp.headers["X-Correlation-ID"]
    summary = resp.json()
    assert summary["title"] == "Biology"
    assert summary["status"] == "draft"
    assert summary["question_count"] == 5

    quiz = client.get(f"/api/quizzes/{summary['id']}", headers=ALICE).json()
    assert len(quiz["questions"]) == 5
    for question in quiz["questions"]:
        assert len(question["answers"]) == 4
        assert sum(a["is_correct"] for a in question["answers"]) == 1
    assert question_shape(client, summary["id"]) == [(term, [definition]) for term, definition in BIOLOGY_CARDS]
    assert row_counts(services.session_factory) == (1, 5, 20)


def test_generate_is_also_served_without_api_prefix(client):
    resp = client.post("/generate", json={"source_url": SET_URL}, headers=ALICE)

    assert resp.status_code == 201
    assert resp.json()["question_count"] == 5


def test_correlation_id_is_echoed(client):
    resp = client.get("/api/health", headers={"X-Correlation-ID": "abc123"})
    assert resp.headers["X-Correlation-ID"] == "abc123"


def test_empty_set_returns_422_and_writes_nothing(client, services):
    services.scraper = FakeScraper(payload=studiable_payload([]))

    resp = generate(client)

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "SET_EMPTY"
    assert row_counts(services.session_factory) == (0, 0, 0)


def test_invalid_url_is_400(client):
    resp = generate(client, source_url="https://example.com/not-a-set")

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_SOURCE_URL"


def test_request_validation_errors_use_the_error_envelope(client):
    resp = generate(client, title="x" * 201)

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"]["violations"][0]["path"] == "body.title"


def test_scraper_failure_then_manual_recovery(client, services):
    automated = generate(client).json()

    services.scraper = FakeScraper(error=ScraperFailed("Platform presented a bot challenge.", API_URL))
    failed = generate(client)
    assert failed.status_code == 424
    error = failed.json()["error"]
    assert error["code"] == "SCRAPER_FAILED"
    assert error["details"]["apiUrl"] == API_URL

    manual = generate(client, manual_payload=studiable_payload(BIOLOGY_CARDS))
    assert manual.status_code == 201
    assert manual.json()["question_count"] == 5
    assert question_shape(client, manual.json()["id"]) == question_shape(client, automated["id"])


def test_malformed_manual_payload_is_422(client, services):
    resp = generate(client, manual_payload={"responses": [{"models": {}}]})

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "DATA_VALIDATION_ERROR"
    assert row_counts(services.session_factory) == (0, 0, 0)


def test_ai_timeout_returns_500_and_writes_nothing(client, services):
    services.generator = FakeGenerator(delay=1.0)
    services.ai_timeout = 0.05

    resp = generate(client)

    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "AI_GENERATION_FAILED"
    assert row_counts(services.session_factory) == (0, 0, 0)


def test_list_and_get_are_owner_scoped(client):
    quiz_id = generate(client).json()["id"]

    items = client.get("/api/quizzes", headers=ALICE).json()["items"]
    assert [q["id"] for q in items] == [quiz_id]
    assert client.get("/api/quizzes?status=published", headers=ALICE).json()["items"] == []
    assert client.get("/api/quizzes", headers={"X-User-Id": "bob"}).json()["items"] == []

    resp = client.get(f"/api/quizzes/{quiz_id}", headers={"X-User-Id": "bob"})
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


def test_regenerate_replaces_incorrect_answers(client, services):
    quiz_id = generate(client).json()["id"]
    question = client.get(f"/api/quizzes/{quiz_id}", headers=ALICE).json()["questions"][0]

    resp = client.post(f"/api/questions/{question['id']}/regenerate",
                       json={"temperature": 1.2, "seed": 9}, headers=ALICE)

    assert resp.status_code == 200
    body = resp.json()
    incorrect = sorted(a["answer_text"] for a in body["answers"] if not a["is_correct"])
    assert incorrect == [f"Mitochondria (fresh {i})" for i in range(1, 4)]
    assert [a["answer_text"] for a in body["answers"] if a["is_correct"]] == ["Mitochondria"]
    assert body["metadata"]["temperature"] == 1.2
    assert body["metadata"]["seed"] == 9
    assert body["metadata"]["regenerated_at"]
    assert services.regenerator.calls == [BIOLOGY_CARDS[0][0]]
    assert row_counts(services.session_factory) == (1, 5, 20)


def test_regenerate_unknown_question_is_404(client):
    resp = client.post("/api/questions/999/regenerate", headers=ALICE)
    assert resp.status_code == 404


def test_get_question(client):
    quiz_id = generate(client).json()["id"]
    question_id = client.get(f"/api/quizzes/{quiz_id}", headers=ALICE).json()["questions"][0]["id"]

    resp = client.get(f"/api/questions/{question_id}", headers=ALICE)
    assert resp.status_code == 200
    assert resp.json()["question_text"] == BIOLOGY_CARDS[0][0]
    assert [a["answer_text"] for a in resp.json()["answers"] if a["is_correct"]] == ["Mitochondria"]

    other = client.get(f"/api/questions/{question_id}", headers={"X-User-Id": "bob"})
    assert other.status_code == 404
