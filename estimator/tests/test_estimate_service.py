"""Tests for the estimate orchestration service.

Tests cover:
- Prompt-to-project generation (markup) and its conversation log
- JSON generation from project details, nested sub-items and duplicate skipping
- Follow-up prompts applying add/update/delete actions
- Ownership checks
- Direct and AI-driven range actions
- Streamed workflows: event order, in-band validation errors, batch progress
"""

import asyncio

import pytest

from estimator.core.auth import AuthUser
from estimator.core.db import DatabaseManager
from estimator.core.estimate import EstimateService, derive_project_name, normalize_line_items
from estimator.core.exceptions import (
    AuthorizationError,
    EstimatorError,
    NotFoundError,
    ValidationError,
)
from estimator.core.project import ProjectManager


# ── Fixtures ────────────────────────────────────────────────────────────


class FakeLLMClient:
    """Buffered and streamed completions from canned text."""

    def __init__(self, response="", fragments=None, error=None):
        self.response = response
        self.fragments = fragments or []
        self.error = error
        self.prompts = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.response

    async def generate_stream(self, prompt):
        self.prompts.append(prompt)
        for fragment in self.fragments:
            yield fragment
        if self.error:
            raise self.error


MARKUP = """<estimate>
  <project_title>Bathroom refresh</project_title>
  <currency>EUR</currency>
  <actions>
    <action>+ description='Ceramic tile', quantity=12, unit_price=30</action>
    <action>+ description='Tiling labor', quantity=8, unit_price=45</action>
  </actions>
</estimate>"""

DETAILS_JSON = """{"estimate": {"title": "Garage", "currency": "usd", "totalAmount": 5000,
 "lineItems": [
   {"description": "Foundation", "quantity": 1, "unitPrice": 3000, "amount": 3000,
    "subItems": [{"description": "Concrete material", "quantity": 10, "unitPrice": 100}]},
   {"description": "Framing labor", "quantity": 20, "unitPrice": 100}
 ]}}"""

USER = AuthUser(id="user-1", email="one@example.com")
OTHER = AuthUser(id="user-2", email="two@example.com")


@pytest.fixture
def store():
    db = DatabaseManager("sqlite://")
    db.create_tables()
    yield ProjectManager(db)
    db.dispose()


@pytest.fixture
def llm():
    return FakeLLMClient(response=MARKUP)


@pytest.fixture
def service(llm, store):
    return EstimateService(llm, store, partial_min_length=10_000)


def run(coro):
    return asyncio.run(coro)


def collect(agen):
    async def _collect():
        return [event async for event in agen]

    return asyncio.run(_collect())


def seeded_project(store, user=USER, count=3):
    project = store.create_project(user.id, "Seeded", currency="USD")
    for n in range(count):
        store.create_item(project["id"], user.id, {
            "title": f"Item {n}", "description": f"Item {n}",
            "quantity": 1, "unit_price": 10 * (n + 1), "amount": 10 * (n + 1),
        })
    return project


# ── Tests: helpers ──────────────────────────────────────────────────────


class TestHelpers:
    """Pure helpers."""

    def test_derive_project_name_cuts_at_sentence(self):
        assert derive_project_name("Build a deck. It should be 20 ft.") == "Build a deck"

    def test_derive_project_name_truncates(self):
        assert derive_project_name("a" * 60) == "a" * 50 + "..."

    def test_normalize_line_items_handles_template_echo(self):
        items = normalize_line_items([{
            "description": "Paint",
            "quantity": {"type": "number"},
            "unitPrice": "12.5",
            "unitType": {"enum": ["hour", "day"]},
        }], "USD")
        assert items[0]["quantity"] == 0
        assert items[0]["unit_price"] == 12.5
        assert items[0]["unit_type"] == "hour"
        assert items[0]["title"] == "Paint"


# ── Tests: generate_estimate ────────────────────────────────────────────


class TestGenerateEstimate:
    """Free-text prompt to a new project."""

    def test_creates_project_and_items(self, service, store):
        result = run(service.generate_estimate(USER, "Redo the small bathroom"))

        assert result["success"] is True
        assert result["projectTitle"] == "Bathroom refresh"
        assert result["currency"] == "EUR"
        assert result["itemsAdded"] == 2
        assert result["message"] == 'Created construction project "Bathroom refresh" with 2 line items'

        project = store.get_project(result["projectId"])
        assert project["created_by"] == "user-1"
        assert project["total_amount"] == pytest.approx(12 * 30 + 8 * 45)

    def test_logs_conversation(self, service, store):
        result = run(service.generate_estimate(USER, "Redo the small bathroom"))
        messages = store.get_conversations(result["projectId"])[0]["messages"]

        assert [m["role"] for m in messages] == ["assistant", "user", "assistant"]
        assert messages[0]["content"]["type"] == "initial_estimate"
        assert messages[1]["content"] == "Redo the small bathroom"
        assert messages[2]["content"]["action_summary"]["itemsAdded"] == 2

    def test_default_title_uses_prompt(self, llm, service):
        llm.response = "<estimate><action>+ description='Gravel'</action></estimate>"
        result = run(service.generate_estimate(USER, "Driveway gravel. About 40 tons."))
        assert result["projectTitle"] == "Driveway gravel"

    def test_empty_prompt_rejected(self, service):
        with pytest.raises(ValidationError):
            run(service.generate_estimate(USER, "   "))

    def test_missing_markup(self, llm, service):
        llm.response = "Sorry, I can't."
        with pytest.raises(EstimatorError) as exc:
            run(service.generate_estimate(USER, "Anything"))
        assert exc.value.code == "MISSING_ESTIMATE_DATA"

    def test_unexpected_failure_wrapped(self, llm, service):
        llm.error = RuntimeError("boom")
        with pytest.raises(EstimatorError) as exc:
            run(service.generate_estimate(USER, "Anything"))
        assert exc.value.error == "Failed to generate construction estimate"
        assert exc.value.status_code == 500


# ── Tests: generate_from_details ────────────────────────────────────────


class TestGenerateFromDetails:
    """Structured details in JSON mode."""

    DETAILS = {"title": "Garage", "description": "Two-car detached garage"}

    def test_creates_nested_items(self, llm, service, store):
        llm.response = DETAILS_JSON
        result = run(service.generate_from_details(USER, self.DETAILS))

        assert result["itemsAdded"] == 3
        assert result["currency"] == "USD"
        assert result["totalAmount"] == 5000

        items = {i["title"]: i for i in store.get_line_items(result["projectId"])}
        assert items["Concrete material"]["parent_item_id"] == items["Foundation"]["id"]
        assert items["Concrete material"]["amount"] == pytest.approx(1000)
        assert items["Concrete material"]["cost_type"] == "material"
        assert items["Framing labor"]["cost_type"] == "labor"
        assert "JSON" in llm.prompts[0]

    def test_merge_skips_duplicates(self, llm, service, store):
        llm.response = DETAILS_JSON
        first = run(service.generate_from_details(USER, self.DETAILS))
        again = run(service.generate_from_details(USER, self.DETAILS, project_id=first["projectId"]))

        assert again["itemsAdded"] == 0
        assert again["duplicatesSkipped"] == 3
        assert store.count_line_items(first["projectId"]) == 3

    def test_details_required(self, service):
        with pytest.raises(ValidationError):
            run(service.generate_from_details(USER, {"title": "No description"}))


# ── Tests: additional_prompt ────────────────────────────────────────────


class TestAdditionalPrompt:
    """Follow-up changes to an existing project."""

    def test_applies_actions(self, llm, service, store):
        project = seeded_project(store)
        first, second, _ = store.get_line_items(project["id"])
        llm.response = (
            "<estimate><actions>"
            f"<action>+ ID:{first['id']}, quantity=5</action>"
            f"<action>- ID:{second['id']}</action>"
            "<action>+ description='Paint', quantity=2, unit_price=10</action>"
            "</actions></estimate>"
        )

        result = run(service.additional_prompt(USER, project["id"], "Adjust things"))

        assert (result["itemsAdded"], result["itemsUpdated"], result["itemsDeleted"]) == (1, 1, 1)
        assert result["nextOffset"] is None
        assert store.get_item(project["id"], first["id"])["quantity"] == 5
        assert store.get_item(project["id"], second["id"]) is None
        assert f"ID:{first['id']}" in llm.prompts[0]

    def test_requires_prompt(self, service, store):
        project = seeded_project(store)
        with pytest.raises(ValidationError):
            run(service.additional_prompt(USER, project["id"], ""))

    def test_requires_project_id(self, service):
        with pytest.raises(ValidationError):
            run(service.additional_prompt(USER, None, "Add paint"))

    def test_other_users_project_forbidden(self, service, store):
        project = seeded_project(store, user=OTHER)
        with pytest.raises(AuthorizationError):
            run(service.additional_prompt(USER, project["id"], "Add paint"))

    def test_unknown_project(self, service):
        with pytest.raises(NotFoundError):
            run(service.additional_prompt(USER, 9999, "Add paint"))


# ── Tests: range_action ─────────────────────────────────────────────────


class TestRangeAction:
    """Row-range operations."""

    def test_update_first_row(self, service, store):
        project = seeded_project(store)
        result = run(service.range_action(
            USER, project["id"], "update", {"start": 0, "end": 0}, {"quantity": 2, "unit_price": 50},
        ))
        assert result["affectedCount"] == 1
        assert result["updatedItems"][0]["amount"] == pytest.approx(100)
        assert store.get_project(project["id"])["total_amount"] == pytest.approx(100 + 20 + 30)

    def test_delete_range(self, service, store):
        project = seeded_project(store)
        result = run(service.range_action(USER, project["id"], "delete", {"start": 1, "end": 2}))
        assert result["affectedCount"] == 2
        assert [i["title"] for i in result["updatedItems"]] == ["Item 0"]

    def test_duplicate_range(self, service, store):
        project = seeded_project(store)
        result = run(service.range_action(USER, project["id"], "duplicate", {"start": 0, "end": 1}))
        assert result["affectedCount"] == 2
        assert len(result["updatedItems"]) == 5
        assert result["updatedItems"][-1]["data"]["duplicated_from"] == result["updatedItems"][1]["id"]

    @pytest.mark.parametrize("row_range", [
        {"start": 2, "end": 1},
        {"start": -1, "end": 1},
        {"start": "a", "end": 1},
        {"end": 1},
        [0, 1],
    ])
    def test_invalid_range(self, service, store, row_range):
        project = seeded_project(store)
        with pytest.raises(ValidationError):
            run(service.range_action(USER, project["id"], "delete", row_range))

    def test_empty_range(self, service, store):
        project = seeded_project(store)
        with pytest.raises(NotFoundError):
            run(service.range_action(USER, project["id"], "delete", {"start": 10, "end": 12}))

    def test_update_requires_data(self, service, store):
        project = seeded_project(store)
        with pytest.raises(ValidationError):
            run(service.range_action(USER, project["id"], "update", {"start": 0, "end": 0}, {}))

    def test_unsupported_action(self, service, store):
        project = seeded_project(store)
        with pytest.raises(ValidationError):
            run(service.range_action(USER, project["id"], "archive", {"start": 0, "end": 0}))

    def test_supplied_ai_response(self, llm, service, store):
        project = seeded_project(store)
        first = store.get_line_items(project["id"])[0]
        result = run(service.range_action(
            USER, project["id"],
            row_range={"start": 0, "end": 0},
            prompt="Change the cost type to equipment",
            xml_response=f"<action>+ ID:{first['id']}, cost_type=equipment, quantity=99</action>",
        ))

        assert result["actionSummary"]["itemsUpdated"] == 1
        item = store.get_item(project["id"], first["id"])
        assert item["cost_type"] == "equipment"
        assert item["quantity"] == 1
        assert llm.prompts == []

    def test_ai_response_without_actions(self, llm, service, store):
        project = seeded_project(store)
        llm.response = "nothing useful"
        with pytest.raises(ValidationError):
            run(service.range_action(
                USER, project["id"], row_range={"start": 0, "end": 0}, prompt="Make it cheaper",
            ))


# ── Tests: streamed workflows ───────────────────────────────────────────


class TestStreamEstimate:
    """NDJSON generation flow."""

    def test_event_sequence(self, llm, service, store):
        llm.fragments = [MARKUP[:60], MARKUP[60:]]
        events = collect(service.stream_estimate(USER, prompt="Redo the small bathroom"))
        types = [e.type for e in events]

        assert types[0] == "start"
        assert types[1] == "ai_start"
        assert types.count("chunk") == 2
        assert types.index("ai_complete") < types.index("project_created") < types.index("complete")
        assert types.count("complete") == 1
        assert events[-1].message == "Estimation process completed"

        created = events[types.index("project_created")]
        assert created.items_added == 2
        assert store.get_project(created.project_id)["name"] == "Bathroom refresh"

    def test_validation_error_in_band(self, service):
        events = collect(service.stream_estimate(USER, prompt=""))
        assert len(events) == 1
        assert events[0].type == "error"
        assert events[0].code == "VALIDATION"
        assert events[0].recoverable is False

    def test_provider_failure_ends_with_error(self, llm, service):
        llm.fragments = ["<estimate>"]
        llm.error = RuntimeError("upstream exploded")
        events = collect(service.stream_estimate(USER, prompt="Redo the small bathroom"))

        assert events[-1].type == "error"
        assert "complete" not in [e.type for e in events]

    def test_json_mode_from_details(self, llm, service):
        llm.fragments = [DETAILS_JSON]
        events = collect(service.stream_estimate(
            USER, project_details={"title": "Garage", "description": "Two-car garage"},
        ))
        created = [e for e in events if e.type == "project_created"][0]
        assert created.items_added == 3
        assert events[-1].data["estimate"]["title"] == "Garage"


class TestStreamApplyInstructions:
    """Batch progress reporting."""

    def test_progress_batches(self, service, store):
        project = seeded_project(store, count=0)
        instructions = [f"+ description='Item {n}', quantity=1, unit_price=1" for n in range(12)]
        events = collect(service.stream_apply_instructions(USER, project["id"], instructions))

        progress = [e for e in events if e.type == "progress"]
        assert [p.stage for p in progress] == ["start", "processing", "processing", "complete"]
        assert [p.percentage for p in progress] == [0, 83, 100, 100]
        assert events[-1].type == "complete"
        assert events[-1].data["actionSummary"]["itemsAdded"] == 12
        assert store.count_line_items(project["id"]) == 12

    def test_requires_instructions(self, service, store):
        project = seeded_project(store)
        events = collect(service.stream_apply_instructions(USER, project["id"], []))
        assert [e.type for e in events] == ["error"]

    def test_forbidden_project(self, service, store):
        project = seeded_project(store, user=OTHER)
        events = collect(service.stream_apply_instructions(USER, project["id"], ["+ description='x'"]))
        assert events[0].code == "FORBIDDEN"


class TestStreamRangeAction:
    """Range actions over NDJSON."""

    def test_ai_path_streams_tokens(self, llm, service, store):
        project = seeded_project(store)
        first = store.get_line_items(project["id"])[0]
        llm.fragments = [f"<action>+ ID:{first['id']}, ", "cost_type=equipment</action>"]

        events = collect(service.stream_range_action(
            USER, project["id"], row_range={"start": 0, "end": 0},
            prompt="Change the cost type to equipment",
        ))
        types = [e.type for e in events]

        assert types[0] == "start"
        assert "chunk" in types
        assert events[-1].type == "complete"
        assert events[-1].data["actionSummary"]["itemsUpdated"] == 1
        assert store.get_item(project["id"], first["id"])["cost_type"] == "equipment"

    def test_direct_path(self, service, store):
        project = seeded_project(store)
        events = collect(service.stream_range_action(
            USER, project["id"], action="delete", row_range={"start": 0, "end": 0},
        ))
        assert [e.type for e in events] == ["start", "complete"]
        assert events[-1].data["affectedCount"] == 1
