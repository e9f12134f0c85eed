"""
Tests for POST /api/v1/ai/message: quota gating, persistence and degraded replies.
"""
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from onyx_api.models import AssistantMessage, Task, TaskAIMessage
from onyx_api.services.generators import (
    FineTunedGenerator,
    GenerationResult,
    InternetSearchGenerator,
    QuestionClassification,
    QuestionClassifier,
    RAGGenerator,
)
from onyx_api.services.premium_insights import PremiumInsightsService

URL = "/api/v1/ai/message"


@pytest.fixture
def personal_question(monkeypatch):
    async def fake_classify(self, message, config):
        return QuestionClassification(type="PERSONAL", confidence=0.9, reasoning="about their tasks")

    monkeypatch.setattr(QuestionClassifier, "classify", fake_classify)


@pytest.fixture
def rag_reply(monkeypatch, personal_question):
    calls = []

    async def fake_generate(self, request):
        calls.append(request)
        return GenerationResult(
            text="Start with the revenue section.",
            strategy="rag",
            model=request.config.model,
            tokens_used=42,
            extras={"search_terms": ["report"]},
        )

    monkeypatch.setattr(RAGGenerator, "generate", fake_generate)
    return calls


def _task_message(task_id, text="How do I start this?"):
    return {"message_content": text, "message_type": "task_specific", "task_id": str(task_id)}


class TestAIMessageSuccess:
    async def test_free_user_under_quota(self, client: AsyncClient, db_session, test_task, rag_reply):
        response = await client.post(URL, json=_task_message(test_task.id))

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["user_message"]["message"] == "How do I start this?"
        assert body["data"]["user_message"]["from_user"] is True
        assert body["data"]["ai_response"]["message"] == "Start with the revenue section."
        assert body["data"]["ai_response"]["from_ai"] is True
        assert body["subscription_info"]["tier"] == "free"
        assert body["subscription_info"]["remaining_requests"] == 2
        assert body["metadata"]["strategy"] == "rag"
        assert body["metadata"]["tokens_used"] == 42
        assert body["metadata"]["classification"]["type"] == "PERSONAL"

        # Task context was gathered for the generator
        assert rag_reply[0].task_context.task.id == test_task.id

    async def test_exchange_is_persisted_in_order(self, client, db_session, test_task, rag_reply):
        await client.post(URL, json=_task_message(test_task.id))

        result = await db_session.execute(
            select(TaskAIMessage)
            .where(TaskAIMessage.task_id == test_task.id)
            .order_by(TaskAIMessage.created_at)
        )
        rows = result.scalars().all()
        assert [r.from_user for r in rows] == [True, False]
        assert rows[0].created_at < rows[1].created_at

    async def test_general_question_uses_internet_search(self, client, db_session, test_user, monkeypatch):
        async def fake_classify(self, message, config):
            return QuestionClassification(type="GENERAL", confidence=0.8)

        async def fake_generate(self, request):
            return GenerationResult(text="Paris.", strategy="internet_search", model="gpt-3.5-turbo")

        monkeypatch.setattr(QuestionClassifier, "classify", fake_classify)
        monkeypatch.setattr(InternetSearchGenerator, "generate", fake_generate)

        response = await client.post(URL, json={
            "message_content": "What is the capital of France?",
            "message_type": "general_assistant",
        })

        assert response.status_code == 201
        assert response.json()["metadata"]["strategy"] == "internet_search"
        rows = (await db_session.execute(select(AssistantMessage))).scalars().all()
        assert len(rows) == 2

    async def test_plaid_uses_fine_tuned_model_and_premium_features(
        self, client, db_session, make_user, current_user, monkeypatch
    ):
        await make_user("plaid-user", "plaid")
        current_user.issuer = "plaid-user"

        async def fail_classify(self, message, config):
            raise AssertionError("plaid requests are not classified")

        async def fake_generate(self, request):
            return GenerationResult(text="Expert advice.", strategy="fine_tuned", model="gpt-4")

        monkeypatch.setattr(QuestionClassifier, "classify", fail_classify)
        monkeypatch.setattr(FineTunedGenerator, "generate", fake_generate)

        response = await client.post(URL, json={
            "message_content": "Plan my week",
            "message_type": "general_assistant",
        })

        assert response.status_code == 201
        body = response.json()
        assert body["metadata"]["strategy"] == "fine_tuned"
        assert body["subscription_info"]["unlimited"] is True
        assert body["subscription_info"]["remaining_requests"] is None
        assert body["data"]["premium_features"] is not None
        assert "productivity_insights" in body["data"]["premium_features"]


class TestAIMessageQuota:
    async def test_over_quota_saves_user_message_and_returns_429(
        self, client, db_session, test_task, rag_reply
    ):
        for i in range(3):
            response = await client.post(URL, json=_task_message(test_task.id, f"question {i}"))
            assert response.status_code == 201

        response = await client.post(URL, json=_task_message(test_task.id, "one more"))

        assert response.status_code == 429
        body = response.json()
        assert body["success"] is False
        assert "Daily limit of 3" in body["error"]
        assert body["data"]["user_message"]["message"] == "one more"
        assert "ai_response" not in body["data"]
        assert body["subscription_info"]["remaining_requests"] == 0
        # The generator never ran for the denied request
        assert len(rag_reply) == 3

        rows = (await db_session.execute(
            select(TaskAIMessage).where(TaskAIMessage.message == "one more")
        )).scalars().all()
        assert len(rows) == 1
        assert rows[0].from_user is True

    async def test_denied_message_for_unowned_task_is_not_saved(
        self, client, db_session, test_user, other_user, rag_reply
    ):
        for i in range(3):
            db_session.add(AssistantMessage(user_id=test_user.user_id, message=f"q{i}", from_user=True))
        await db_session.commit()

        response = await client.post(URL, json=_task_message(uuid.uuid4(), "not mine"))

        assert response.status_code == 429
        assert response.json()["data"]["user_message"] is None
        rows = (await db_session.execute(
            select(TaskAIMessage).where(TaskAIMessage.message == "not mine")
        )).scalars().all()
        assert rows == []


class TestAIMessageDegraded:
    async def test_generation_failure_keeps_user_message(self, client, db_session, test_task, personal_question, monkeypatch):
        async def broken_generate(self, request):
            raise RuntimeError("provider down")

        monkeypatch.setattr(RAGGenerator, "generate", broken_generate)
        task_id = test_task.id

        response = await client.post(URL, json=_task_message(task_id))

        assert response.status_code == 201
        body = response.json()
        assert body["data"]["user_message"]["message"] == "How do I start this?"
        assert body["data"]["ai_response"] is None
        assert body["message"] == "AI processing is temporarily unavailable. Your message has been saved."

        rows = (await db_session.execute(
            select(TaskAIMessage).where(TaskAIMessage.task_id == task_id)
        )).scalars().all()
        assert len(rows) == 1
        assert rows[0].from_user is True

    async def test_failure_mid_transaction_still_keeps_user_message(
        self, client, db_session, test_task, personal_question, monkeypatch
    ):
        async def failing_search(self, request):
            # Leave unflushable work behind, as a failed query would
            self.db.add(Task(user_id=request.user_id, title=None))
            raise RuntimeError("search query failed")

        monkeypatch.setattr(RAGGenerator, "generate", failing_search)
        task_id = test_task.id

        response = await client.post(URL, json=_task_message(task_id))

        assert response.status_code == 201
        assert response.json()["data"]["ai_response"] is None
        rows = (await db_session.execute(
            select(TaskAIMessage).where(TaskAIMessage.task_id == task_id)
        )).scalars().all()
        assert [row.from_user for row in rows] == [True]

    async def test_premium_insight_failure_still_saves_exchange(
        self, client, db_session, make_user, current_user, monkeypatch
    ):
        await make_user("plaid-user", "plaid")
        current_user.issuer = "plaid-user"

        async def fake_generate(self, request):
            return GenerationResult(text="Expert advice.", strategy="fine_tuned", model="gpt-4")

        async def failing_build(self, task_context=None):
            self.db.add(Task(user_id=self.user_id, title=None))
            raise RuntimeError("insights query failed")

        monkeypatch.setattr(FineTunedGenerator, "generate", fake_generate)
        monkeypatch.setattr(PremiumInsightsService, "build", failing_build)

        response = await client.post(URL, json={
            "message_content": "Plan my week",
            "message_type": "general_assistant",
        })

        assert response.status_code == 201
        assert response.json()["data"]["premium_features"] is None
        rows = (await db_session.execute(
            select(AssistantMessage).where(AssistantMessage.user_id == "plaid-user")
        )).scalars().all()
        assert len(rows) == 2


class TestAIMessageValidation:
    async def test_task_specific_requires_task_id(self, client, test_user):
        response = await client.post(URL, json={"message_content": "hi", "message_type": "task_specific"})
        assert response.status_code == 400
        assert response.json()["error"] == "task_id is required for task_specific messages"

    async def test_unknown_message_type(self, client, test_user):
        response = await client.post(URL, json={"message_content": "hi", "message_type": "chat"})
        assert response.status_code == 400

    @pytest.mark.parametrize("content", ["", "   ", "x" * 2001])
    async def test_message_length(self, client, test_user, content):
        response = await client.post(URL, json={"message_content": content, "message_type": "general_assistant"})
        assert response.status_code == 400

    async def test_unowned_task_is_not_found(self, client, db_session, test_user, other_user, rag_reply):
        response = await client.post(URL, json=_task_message(uuid.uuid4()))
        assert response.status_code == 404
        assert response.json()["error"] == "Task not found"

    async def test_unknown_user_is_not_found(self, client, current_user):
        current_user.issuer = "ghost"
        response = await client.post(URL, json={"message_content": "hi", "message_type": "general_assistant"})
        assert response.status_code == 404
        assert response.json()["error"] == "User not found"
