"""
Tests for question classification and the response generation strategies.
"""
import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from onyx_api.core.config import settings
from onyx_api.models import Note, Task
from onyx_api.services.ai_assistant_service import AIAssistantService
from onyx_api.services.generators import (
    FineTunedGenerator,
    GenerationRequest,
    InternetSearchGenerator,
    QuestionClassifier,
    RAGGenerator,
    fallback_search_terms,
)
from onyx_api.services.subscription_service import build_subscription, get_ai_processing_config


def _request(message="What should I do next?", tier="free", message_type="general_assistant"):
    return GenerationRequest(
        user_id="user-1",
        message=message,
        message_type=message_type,
        config=get_ai_processing_config(tier),
    )


class TestQuestionClassifier:
    async def test_parses_json_reply(self):
        llm = FakeListChatModel(responses=['{"type": "GENERAL", "confidence": 0.8, "reasoning": "world fact"}'])
        result = await QuestionClassifier(llm).classify("Capital of France?", get_ai_processing_config("free"))
        assert result.type == "GENERAL"
        assert result.confidence == 0.8

    async def test_tolerates_prose_around_json(self):
        llm = FakeListChatModel(responses=['Sure!\n```json\n{"type": "PERSONAL", "confidence": 0.7}\n```'])
        result = await QuestionClassifier(llm).classify("My tasks?", get_ai_processing_config("free"))
        assert result.type == "PERSONAL"

    @pytest.mark.parametrize("reply", ["no idea", '{"type": "SOMETHING", "confidence": 0.9}'])
    async def test_unusable_reply_defaults_to_personal(self, reply):
        llm = FakeListChatModel(responses=[reply])
        result = await QuestionClassifier(llm).classify("Hmm", get_ai_processing_config("free"))
        assert result.type == "PERSONAL"
        assert result.confidence == 0.5


def test_fallback_search_terms():
    assert fallback_search_terms("What is the status of my quarterly report today please") == [
        "what", "status", "quarterly", "report", "today",
    ]
    assert fallback_search_terms("a b c") == []


class TestRAGGenerator:
    async def test_searches_only_the_users_history(self, db_session, test_task, other_user):
        db_session.add_all([
            Note(user_id=test_task.user_id, task_id=test_task.id, content="Revenue numbers come from finance"),
            Task(user_id=other_user.user_id, title="Someone else's quarterly report"),
        ])
        await db_session.commit()

        llm = FakeListChatModel(responses=['["quarterly", "revenue"]'])
        retrieved = await RAGGenerator(db_session, llm=llm).search_user_context(
            test_task.user_id, "quarterly revenue?", get_ai_processing_config("free")
        )

        assert retrieved["search_terms"] == ["quarterly", "revenue"]
        assert [t["title"] for t in retrieved["relevant_tasks"]] == ["Complete quarterly report"]
        assert retrieved["relevant_tasks"][0]["folder_name"] == "Work"
        assert retrieved["relevant_notes"] == [
            {"content": "Revenue numbers come from finance", "task_title": "Complete quarterly report"}
        ]

    async def test_search_terms_match_wildcards_literally(self, db_session, test_user):
        db_session.add_all([
            Task(user_id=test_user.user_id, title="Ship 100 widgets"),
            Task(user_id=test_user.user_id, title="Inventory 100% done"),
            Note(user_id=test_user.user_id, content="rename fileXname"),
            Note(user_id=test_user.user_id, content="rename file_name"),
        ])
        await db_session.commit()

        generator = RAGGenerator(db_session, llm=FakeListChatModel(responses=["[]"]))
        tasks = await generator.search_tasks(test_user.user_id, ["100%"], limit=10)
        notes = await generator.search_notes(test_user.user_id, ["file_name"], limit=10)

        assert [t["title"] for t in tasks] == ["Inventory 100% done"]
        assert [n["content"] for n in notes] == ["rename file_name"]

    async def test_generate_uses_retrieved_context(self, db_session, test_task):
        llm = FakeListChatModel(responses=['["report"]', "Your quarterly report is still pending."])
        result = await RAGGenerator(db_session, llm=llm).generate(
            GenerationRequest(
                user_id=test_task.user_id,
                message="How is my report going?",
                message_type="general_assistant",
                config=get_ai_processing_config("free"),
            )
        )

        assert result.text == "Your quarterly report is still pending."
        assert result.strategy == "rag"
        assert result.model == "gpt-3.5-turbo"
        assert result.extras["search_terms"] == ["report"]


class TestInternetSearchGenerator:
    async def test_appends_knowledge_note(self):
        llm = FakeListChatModel(responses=["Paris."])
        result = await InternetSearchGenerator(llm=llm).generate(_request("Capital of France?"))
        assert result.text.startswith("Paris.\n\n")
        assert result.text.endswith(InternetSearchGenerator.KNOWLEDGE_NOTE)
        assert result.strategy == "internet_search"


class TestFineTunedGenerator:
    def test_model_name_prefers_fine_tuned_ids(self, monkeypatch):
        monkeypatch.setattr(settings, "finetuned_task_model_id", "ft:task-model")
        monkeypatch.setattr(settings, "finetuned_general_model_id", None)
        config = get_ai_processing_config("plaid")

        assert FineTunedGenerator("task_specific").model_name(config) == "ft:task-model"
        assert FineTunedGenerator("general_assistant").model_name(config) == "gpt-4"

    async def test_generate(self, monkeypatch):
        monkeypatch.setattr(settings, "finetuned_general_model_id", "ft:general-model")
        llm = FakeListChatModel(responses=["Time-block your mornings."])
        result = await FineTunedGenerator(llm=llm).generate(_request(tier="plaid"))
        assert result.text == "Time-block your mornings."
        assert result.strategy == "fine_tuned"
        assert result.model == "ft:general-model"


class TestSelectGenerator:
    async def test_plaid_skips_classification(self, db_session):
        llm = FakeListChatModel(responses=["unused"])
        service = AIAssistantService(db_session, llm=llm)
        generator, classification = await service.select_generator(_request(tier="plaid"), build_subscription("plaid"))
        assert isinstance(generator, FineTunedGenerator)
        assert classification is None

    @pytest.mark.parametrize("kind,expected", [("GENERAL", InternetSearchGenerator), ("PERSONAL", RAGGenerator)])
    async def test_standard_tiers_route_on_classification(self, db_session, kind, expected):
        llm = FakeListChatModel(responses=[f'{{"type": "{kind}", "confidence": 0.9}}'])
        service = AIAssistantService(db_session, llm=llm)
        generator, classification = await service.select_generator(_request(), build_subscription("premium"))
        assert isinstance(generator, expected)
        assert classification["type"] == kind
