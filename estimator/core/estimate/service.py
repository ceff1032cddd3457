"""Estimate orchestration.

Ties the LLM, the response normalizer, the mutation engine and the project
store together. Every workflow has a buffered form returning one result
dict and a streamed form yielding ``StreamEvent`` objects that always end
with ``complete`` or an ``error``.

Store and engine calls are synchronous SQLAlchemy work and are pushed to
the threadpool so the event loop keeps serving other streams.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from starlette.concurrency import run_in_threadpool

from ..actions import ActionSummary, MutationEngine, detect_change_type, normalize_actions
from ..actions.cost_types import infer_cost_type
from ..actions.parser import to_line_item_fields
from ..constants import (
    DEFAULT_CURRENCY,
    DEFAULT_ITEM_STATUS,
    DEFAULT_PAGE_SIZE,
    DEFAULT_PROJECT_TITLE,
    DEFAULT_UNIT_TYPE,
    MAX_CONTEXT_ITEMS,
    PARTIAL_MIN_LENGTH,
    PROGRESS_BATCH_SIZE,
)
from ..exceptions import AuthorizationError, EstimatorError, NotFoundError, ValidationError
from ..llm import (
    MODE_ACTIONS,
    MODE_JSON,
    MODE_MARKUP,
    EstimateMarkup,
    LLMClient,
    StreamConsumer,
    extract_actions,
    parse_json_response,
    parse_markup_response,
)
from ..llm.prompts import (
    DEFAULT_RESPONSE_STRUCTURE,
    build_additional_prompt,
    build_estimate_prompt,
    build_range_prompt,
)
from ..streaming.errors import classify_error
from ..streaming.events import (
    CompleteEvent,
    ErrorEvent,
    ProgressEvent,
    ProjectCreatedEvent,
    StartEvent,
    StreamEvent,
    WarningEvent,
)
from .dedupe import find_duplicate

logger = logging.getLogger(__name__)

_SENTENCE_END_RE = re.compile(r"[.!?]")

RANGE_ACTIONS = ("update", "delete", "duplicate")
INVALID_RANGE = "Invalid range format. Must include start and end indices with start <= end"


@dataclass
class EstimateContext:
    """Everything one LLM call is built from."""

    project_details: Dict[str, Any]
    existing_items: List[Dict[str, Any]] = field(default_factory=list)
    total_items: Optional[int] = None
    response_structure: Optional[Dict[str, Any]] = None
    additional_requirements: Optional[Dict[str, Any]] = None
    allow_web_browsing: bool = False

    def __post_init__(self):
        self.existing_items = list(self.existing_items)[:MAX_CONTEXT_ITEMS]

    @property
    def mode(self) -> str:
        return MODE_JSON if self.response_structure else MODE_MARKUP

    def estimate_prompt(self) -> str:
        return build_estimate_prompt(
            self.project_details, self.response_structure, self.additional_requirements
        )

    def additional_prompt(self, prompt: str) -> str:
        return build_additional_prompt(
            self.project_details,
            self.existing_items,
            prompt,
            allow_web_browsing=self.allow_web_browsing,
            total_items=self.total_items,
        )


def derive_project_name(prompt: str) -> str:
    """Short project name: first 50 characters, cut at the first sentence end."""
    prompt = prompt.strip()
    name = prompt[:50].strip() + "..." if len(prompt) > 50 else prompt
    match = _SENTENCE_END_RE.search(name)
    if match and 0 < match.start() < len(name) - 3:
        name = name[:match.start()]
    return name


def _require_text(value: Any, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(message)
    return value.strip()


def parse_row_range(row_range: Any) -> Tuple[int, int]:
    """Validate ``{start, end}`` (zero-based, inclusive)."""
    if not isinstance(row_range, dict):
        raise ValidationError(INVALID_RANGE)
    start, end = row_range.get("start"), row_range.get("end")
    if isinstance(start, bool) or isinstance(end, bool):
        raise ValidationError(INVALID_RANGE)
    try:
        start, end = int(start), int(end)
    except (TypeError, ValueError):
        raise ValidationError(INVALID_RANGE)
    if start < 0 or end < start:
        raise ValidationError(INVALID_RANGE)
    return start, end


def _operation_failed(title: str, e: Exception) -> EstimatorError:
    err = EstimatorError(str(e) or title, details=str(e))
    err.error = title
    return err


def _error_event(e: Exception) -> ErrorEvent:
    """Terminal error event for a failure outside the LLM stream."""
    if isinstance(e, EstimatorError):
        return ErrorEvent(error=e.message, code=e.code, recoverable=False, details=e.details)
    return ErrorEvent(error=str(e), code=classify_error(e), recoverable=False)


# ── JSON estimate normalization ───────────────────────────────────────


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip())
        except ValueError:
            return default
    return default


def _choice(value: Any, default: Optional[str]) -> Optional[str]:
    """A string, or the first ``enum`` entry of a field-definition object."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, dict) and isinstance(value.get("enum"), list) and value["enum"]:
        return str(value["enum"][0])
    return default


def normalize_line_items(raw_items: Any, currency: str = DEFAULT_CURRENCY) -> List[Dict[str, Any]]:
    """Map model-emitted ``lineItems`` (with nested ``subItems``) onto item records.

    Models sometimes echo the response template back, so any field may be
    a field-definition object (``{"type": "number"}``) instead of a value.
    """
    if not isinstance(raw_items, list):
        return []

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        description = raw.get("description") if isinstance(raw.get("description"), str) else ""
        title = raw.get("title") if isinstance(raw.get("title"), str) else ""
        quantity = _number(raw.get("quantity"), 1 if raw.get("quantity") is None else 0)
        unit_price = _number(raw.get("unitPrice", raw.get("unit_price")), 0)
        amount = raw.get("amount")
        amount = amount if isinstance(amount, (int, float)) and not isinstance(amount, bool) \
            else quantity * unit_price

        items.append({
            "title": title or description or "Unnamed Item",
            "description": description or title,
            "quantity": quantity,
            "unit_price": unit_price,
            "amount": amount,
            "unit_type": _choice(raw.get("unitType", raw.get("unit_type")), DEFAULT_UNIT_TYPE),
            "cost_type": _choice(raw.get("costType", raw.get("cost_type")), None)
            or infer_cost_type(description or title),
            "currency": currency,
            "source": {k: v for k, v in raw.items() if k != "subItems"},
            "sub_items": normalize_line_items(raw.get("subItems"), currency),
        })
    return items


def total_from_line_items(items: List[Dict[str, Any]]) -> float:
    return float(sum(item["amount"] for item in items))


class EstimateService:
    """Runs the estimate workflows for one authenticated user at a time.

    Args:
        llm_client: LLMClient
        project_manager: ProjectManager (the persistence store)
        engine: MutationEngine over the same store
    """

    def __init__(
        self,
        llm_client: LLMClient,
        project_manager,
        engine: Optional[MutationEngine] = None,
        partial_min_length: int = PARTIAL_MIN_LENGTH,
    ):
        self.llm = llm_client
        self.projects = project_manager
        self.engine = engine or MutationEngine(project_manager)
        self.partial_min_length = partial_min_length

    # =========================================================================
    # Shared steps
    # =========================================================================

    async def get_owned_project(self, user_id: str, project_id: Any) -> Dict:
        """Load a project the caller owns (404 / 403 otherwise)."""
        try:
            project_id = int(project_id)
        except (TypeError, ValueError):
            raise NotFoundError("Project not found")

        project = await run_in_threadpool(self.projects.get_project, project_id)
        if not project:
            raise NotFoundError("Project not found")
        if project.get("created_by") != user_id:
            raise AuthorizationError("You do not have access to this project")
        return project

    async def _refresh_total(self, project_id: int) -> float:
        total = await run_in_threadpool(self.projects.calculate_total, project_id)
        await run_in_threadpool(self.projects.update_project, project_id, total_amount=total)
        return total

    async def _persist_markup(
        self,
        user,
        prompt: str,
        fallback_name: str,
        markup: EstimateMarkup,
        raw_response: str,
    ) -> Dict[str, Any]:
        """Create a project from a markup estimate and apply its actions."""
        title = markup.project_title
        if not title or title == DEFAULT_PROJECT_TITLE:
            title = fallback_name or DEFAULT_PROJECT_TITLE

        project = await run_in_threadpool(
            self.projects.create_project,
            user.id, title, prompt, markup.currency, 0, raw_response,
        )
        logger.info(f"Project created with ID: {project['id']}")

        summary = await run_in_threadpool(
            self.engine.apply, project["id"], user.id, markup.instructions, markup.currency
        )
        await self._refresh_total(project["id"])
        await run_in_threadpool(
            self.projects.log_prompt_and_actions,
            project["id"], user.id, prompt, raw_response, summary.to_dict(),
        )

        return {
            "success": True,
            "projectId": project["id"],
            "projectTitle": title,
            "currency": markup.currency,
            "itemsAdded": summary.items_added,
            "errors": summary.errors,
            "message": f'Created construction project "{title}" with {summary.items_added} line items',
        }

    def _create_item_tree(
        self,
        project_id: int,
        user_id: str,
        items: List[Dict[str, Any]],
        existing: List[Dict[str, Any]],
    ) -> Tuple[List[Dict], List[Dict]]:
        """Create roots first, then each level of sub-items.

        Items that duplicate a sibling already in the project are skipped;
        their sub-items attach to the existing copy.
        """
        created, skipped = [], []
        seen = list(existing)
        level = [(None, item) for item in items]
        now = datetime.now(timezone.utc).isoformat()

        while level:
            next_level = []
            for parent_id, item in level:
                siblings = [s for s in seen if s.get("parent_item_id") == parent_id]
                duplicate = find_duplicate(item, siblings)
                if duplicate is not None:
                    skipped.append(item)
                    target_id = duplicate["id"]
                else:
                    record = {
                        key: item[key] for key in (
                            "title", "description", "quantity", "unit_price",
                            "amount", "unit_type", "cost_type", "currency",
                        )
                    }
                    record.update({
                        "status": DEFAULT_ITEM_STATUS,
                        "parent_item_id": parent_id,
                        "is_sub_item": parent_id is not None,
                        "data": {
                            "ai_generated": True,
                            "generation_timestamp": now,
                            "original_item": item["source"],
                        },
                    })
                    row = self.projects.create_item(project_id, user_id, record)
                    created.append(row)
                    seen.append(row)
                    target_id = row["id"]
                next_level.extend((target_id, child) for child in item["sub_items"])
            level = next_level

        return created, skipped

    async def _persist_json(
        self,
        user,
        project_details: Dict[str, Any],
        data: Any,
        raw_response: str,
        project_id: Optional[Any] = None,
    ) -> Dict[str, Any]:
        estimate = data.get("estimate", data) if isinstance(data, dict) else {}
        if not isinstance(estimate, dict):
            estimate = {}

        title = _choice(estimate.get("title"), None) or project_details.get("title") or DEFAULT_PROJECT_TITLE
        currency = estimate.get("currency")
        if not (isinstance(currency, str) and len(currency.strip()) == 3):
            currency = DEFAULT_CURRENCY
        currency = currency.strip().upper()

        items = normalize_line_items(estimate.get("lineItems"), currency)
        total = estimate.get("totalAmount")
        if not isinstance(total, (int, float)) or isinstance(total, bool):
            total = total_from_line_items(items)

        if project_id is not None:
            project = await self.get_owned_project(user.id, project_id)
            count = await run_in_threadpool(self.projects.count_line_items, project["id"])
            existing = await run_in_threadpool(
                self.projects.get_line_items, project["id"], 0, max(count, 1)
            )
        else:
            project = await run_in_threadpool(
                self.projects.create_project,
                user.id, title, project_details.get("description") or "", currency, total, raw_response,
            )
            existing = []

        created, skipped = await run_in_threadpool(
            self._create_item_tree, project["id"], user.id, items, existing
        )
        if project_id is not None:
            total = await self._refresh_total(project["id"])

        return {
            "success": True,
            "projectId": project["id"],
            "projectTitle": project["name"] if project_id is not None else title,
            "currency": currency,
            "totalAmount": total,
            "itemsAdded": len(created),
            "duplicatesSkipped": len(skipped),
            "errors": [],
            "message": f'Created construction project "{title}" with {len(created)} line items'
            if project_id is None
            else f"Added {len(created)} line items ({len(skipped)} duplicates skipped)",
        }

    async def _prepare_additional(
        self, user, project_id: Any, prompt: Any, offset: int, allow_web_browsing: bool
    ):
        if not project_id:
            raise ValidationError("Project ID is required")
        prompt = _require_text(prompt, "Prompt is required")

        project = await self.get_owned_project(user.id, project_id)
        offset = max(int(offset or 0), 0)
        items = await run_in_threadpool(
            self.projects.get_line_items, project["id"], offset, DEFAULT_PAGE_SIZE
        )
        total_items = await run_in_threadpool(self.projects.count_line_items, project["id"])

        context = EstimateContext(
            project_details=project,
            existing_items=items,
            total_items=max(total_items - offset, len(items)),
            allow_web_browsing=allow_web_browsing,
        )
        next_offset = offset + len(items) if len(items) == DEFAULT_PAGE_SIZE else None
        return project, prompt, context.additional_prompt(prompt), next_offset

    async def _load_range(self, user, project_id: Any, row_range: Any):
        start, end = parse_row_range(row_range)
        project = await self.get_owned_project(user.id, project_id)
        items = await run_in_threadpool(
            self.projects.get_items_by_row_range, project["id"], start, end
        )
        if not items:
            raise NotFoundError("No line items found in the specified range")
        return project, items

    def _apply_range_operation(
        self,
        project_id: int,
        user_id: str,
        operation: str,
        items: List[Dict],
        data: Any,
    ) -> List[Dict]:
        if operation == "update":
            try:
                fields = to_line_item_fields(data)
            except ValueError as e:
                raise ValidationError(str(e))
            changes = fields.to_changes()
            if (fields.amount is None and fields.quantity is not None
                    and fields.unit_price is not None):
                changes["amount"] = fields.quantity * fields.unit_price
            results = [
                self.projects.update_item(project_id, item["id"], changes, fields.extra)
                for item in items
            ]
            return [r for r in results if r is not None]

        if operation == "delete":
            return [
                {"id": item["id"], "deleted": True}
                for item in items
                if self.projects.delete_item(project_id, item["id"])
            ]

        results = [self.projects.duplicate_item(project_id, item["id"], user_id) for item in items]
        return [r for r in results if r is not None]

    async def _apply_in_batches(
        self,
        project_id: int,
        user_id: str,
        instructions: List[str],
        currency: str,
        summary: ActionSummary,
    ) -> AsyncIterator[ProgressEvent]:
        """Apply instructions in order, reporting progress after every batch."""
        total = len(instructions)
        yield ProgressEvent(
            stage="start",
            total=total,
            processed=0,
            percentage=0,
            message=f"Starting to process {total} line items",
        )

        for i in range(0, total, PROGRESS_BATCH_SIZE):
            batch = instructions[i:i + PROGRESS_BATCH_SIZE]
            result = await run_in_threadpool(self.engine.apply, project_id, user_id, batch, currency)
            summary.merge(result)
            processed = i + len(batch)
            yield ProgressEvent(
                stage="processing",
                total=total,
                processed=processed,
                percentage=round(processed * 100 / total),
                message=f"Processed {processed} of {total} items",
                summary=summary.to_dict(),
            )

        yield ProgressEvent(
            stage="complete",
            total=total,
            processed=total,
            percentage=100,
            message="All line items processed",
            summary=summary.to_dict(),
        )

    async def _relay(self, consumer: StreamConsumer, prompt: str, mode: str) -> AsyncIterator[StreamEvent]:
        """Forward the consumer's events, holding back its ``complete``.

        A failure has already been reported in-band by the consumer, so it
        ends the relay quietly and ``consumer.result`` stays None.
        """
        try:
            async for event in consumer.run(prompt, mode):
                if not isinstance(event, CompleteEvent):
                    yield event
        except Exception as e:
            logger.warning(f"AI stream ended with error after {consumer.chunk_count} chunks: {e}")

    # =========================================================================
    # Buffered workflows
    # =========================================================================

    async def generate_estimate(self, user, prompt: Any) -> Dict[str, Any]:
        """Create a project and its line items from a free-text prompt."""
        prompt = _require_text(prompt, "Prompt is required and must be a non-empty string")
        project_name = derive_project_name(prompt)
        context = EstimateContext(project_details={"title": project_name, "description": prompt})

        try:
            raw = await self.llm.generate(context.estimate_prompt())
            markup = parse_markup_response(raw)
            return await self._persist_markup(user, prompt, project_name, markup, raw)
        except EstimatorError:
            raise
        except Exception as e:
            logger.error(f"Estimate generation failed: {e}")
            raise _operation_failed("Failed to generate construction estimate", e) from e

    async def generate_from_details(
        self,
        user,
        project_details: Any,
        response_structure: Optional[Dict[str, Any]] = None,
        additional_requirements: Optional[Dict[str, Any]] = None,
        project_id: Optional[Any] = None,
    ) -> Dict[str, Any]:
        """JSON-mode estimate from structured project details.

        With ``project_id`` the items are merged into that project, skipping
        duplicates; otherwise a new project is created.
        """
        if not isinstance(project_details, dict) or not project_details.get("title") \
                or not project_details.get("description"):
            raise ValidationError("Project details with title and description are required")

        context = EstimateContext(
            project_details=project_details,
            response_structure=response_structure or DEFAULT_RESPONSE_STRUCTURE,
            additional_requirements=additional_requirements,
        )
        try:
            raw = await self.llm.generate(context.estimate_prompt())
            data = parse_json_response(raw)
            return await self._persist_json(user, project_details, data, raw, project_id)
        except EstimatorError:
            raise
        except Exception as e:
            logger.error(f"Estimate generation from details failed: {e}")
            raise _operation_failed("Failed to generate construction estimate", e) from e

    async def additional_prompt(
        self,
        user,
        project_id: Any,
        prompt: Any,
        offset: int = 0,
        allow_web_browsing: bool = False,
    ) -> Dict[str, Any]:
        """Modify an existing estimate from a follow-up prompt."""
        project, prompt, llm_prompt, next_offset = await self._prepare_additional(
            user, project_id, prompt, offset, allow_web_browsing
        )

        try:
            raw = await self.llm.generate(llm_prompt)
            markup = parse_markup_response(raw)
            summary = await run_in_threadpool(
                self.engine.apply, project["id"], user.id, markup.instructions,
                project.get("currency") or DEFAULT_CURRENCY,
            )
            await self._refresh_total(project["id"])
            await run_in_threadpool(
                self.projects.log_prompt_and_actions,
                project["id"], user.id, prompt, raw, summary.to_dict(),
            )
        except EstimatorError:
            raise
        except Exception as e:
            logger.error(f"Additional prompt failed for project {project['id']}: {e}")
            raise _operation_failed("Failed to process additional prompt", e) from e

        return {
            "success": True,
            "projectId": project["id"],
            "itemsAdded": summary.items_added,
            "itemsUpdated": summary.items_updated,
            "itemsDeleted": summary.items_deleted,
            "errors": summary.errors,
            "nextOffset": next_offset,
            "message": f"Applied {summary.total_changes} changes to the project",
        }

    async def range_action(
        self,
        user,
        project_id: Any,
        action: Optional[str] = None,
        row_range: Any = None,
        data: Any = None,
        prompt: Optional[str] = None,
        xml_response: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Direct ``update|delete|duplicate`` over a row range, or an AI change."""
        if xml_response or (prompt and not action):
            return await self.ai_range_action(user, project_id, row_range, prompt, xml_response)

        if not project_id or not action or row_range is None:
            raise ValidationError("Missing required fields: projectId, action, and range are required")

        project, items = await self._load_range(user, project_id, row_range)
        operation = str(action).lower()
        if operation == "update" and (not isinstance(data, dict) or not data):
            raise ValidationError("Update action requires data object with fields to update")
        if operation not in RANGE_ACTIONS:
            raise ValidationError(
                f"Unsupported action: {action}. Supported actions are: {', '.join(RANGE_ACTIONS)}"
            )

        try:
            affected = await run_in_threadpool(
                self._apply_range_operation, project["id"], user.id, operation, items, data
            )
            await self._refresh_total(project["id"])
            updated_items = await run_in_threadpool(self.projects.get_line_items, project["id"])
        except EstimatorError:
            raise
        except Exception as e:
            logger.error(f"Range action {operation} failed for project {project['id']}: {e}")
            raise _operation_failed("Failed to process range action", e) from e

        return {
            "success": True,
            "action": action,
            "range": row_range,
            "affectedCount": len(affected),
            "updatedItems": updated_items,
        }

    async def ai_range_action(
        self,
        user,
        project_id: Any,
        row_range: Any,
        prompt: Optional[str],
        xml_response: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Let the model rewrite the items in a row range."""
        if not project_id or row_range is None or not prompt:
            raise ValidationError("Missing required fields: projectId, range, and prompt are required")

        project, items = await self._load_range(user, project_id, row_range)
        change_type = detect_change_type(prompt)
        logger.info(f"Detected change type: {change_type}")

        try:
            raw = xml_response or await self.llm.generate(build_range_prompt(items, prompt, change_type))
            actions = extract_actions(raw)
            if not actions:
                raise ValidationError("No valid actions found in the AI response")

            normalized = normalize_actions(actions, change_type)
            summary = await run_in_threadpool(
                self.engine.apply, project["id"], user.id, normalized,
                project.get("currency") or DEFAULT_CURRENCY,
            )
            await self._refresh_total(project["id"])
            await run_in_threadpool(
                self.projects.log_prompt_and_actions,
                project["id"], user.id, prompt, raw, summary.to_dict(),
            )
            updated_items = await run_in_threadpool(self.projects.get_line_items, project["id"])
        except EstimatorError:
            raise
        except Exception as e:
            logger.error(f"AI range action failed for project {project['id']}: {e}")
            raise _operation_failed("Failed to process AI-generated range action", e) from e

        return {
            "success": True,
            "prompt": prompt,
            "range": row_range,
            "actionSummary": summary.to_dict(),
            "updatedItems": updated_items,
        }

    # =========================================================================
    # Streamed workflows
    # =========================================================================

    async def stream_estimate(
        self,
        user,
        prompt: Optional[str] = None,
        project_details: Optional[Dict[str, Any]] = None,
        response_structure: Optional[Dict[str, Any]] = None,
        additional_requirements: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Streamed generation: markup from a prompt, JSON from project details."""
        try:
            if project_details is not None:
                if not isinstance(project_details, dict) or not project_details.get("title") \
                        or not project_details.get("description"):
                    raise ValidationError("Project details with title and description are required")
                context = EstimateContext(
                    project_details=project_details,
                    response_structure=response_structure or DEFAULT_RESPONSE_STRUCTURE,
                    additional_requirements=additional_requirements,
                )
                project_name = project_details["title"]
            else:
                prompt = _require_text(prompt, "Prompt is required and must be a non-empty string")
                project_name = derive_project_name(prompt)
                context = EstimateContext(
                    project_details={"title": project_name, "description": prompt}
                )
        except ValidationError as e:
            yield _error_event(e)
            return

        yield StartEvent(message="Starting AI estimation process")

        consumer = StreamConsumer(self.llm, self.partial_min_length)
        async for event in self._relay(consumer, context.estimate_prompt(), context.mode):
            yield event
        if consumer.result is None:
            return

        try:
            if context.mode == MODE_JSON:
                saved = await self._persist_json(user, context.project_details, consumer.result, consumer.raw_text)
            else:
                saved = await self._persist_markup(user, prompt, project_name, consumer.result, consumer.raw_text)
            yield ProjectCreatedEvent(
                project_id=saved["projectId"],
                project_title=saved["projectTitle"],
                currency=saved["currency"],
                items_added=saved["itemsAdded"],
                errors=saved["errors"],
                message=saved["message"],
            )
        except Exception as e:
            logger.error(f"Project creation from stream failed: {e}")
            yield WarningEvent(
                message="Estimate generated but project creation failed",
                details=getattr(e, "message", None) or str(e),
            )

        payload = consumer.result.to_dict() if isinstance(consumer.result, EstimateMarkup) else consumer.result
        yield CompleteEvent(data=payload, message="Estimation process completed")

    async def stream_additional_prompt(
        self,
        user,
        project_id: Any,
        prompt: Any,
        offset: int = 0,
        allow_web_browsing: bool = False,
    ) -> AsyncIterator[StreamEvent]:
        try:
            project, prompt, llm_prompt, next_offset = await self._prepare_additional(
                user, project_id, prompt, offset, allow_web_browsing
            )
        except Exception as e:
            yield _error_event(e)
            return

        yield ProgressEvent(stage="preparation", message="Preparing context for AI...")

        consumer = StreamConsumer(self.llm, self.partial_min_length)
        async for event in self._relay(consumer, llm_prompt, MODE_MARKUP):
            yield event
        if consumer.result is None:
            return

        summary = ActionSummary()
        try:
            async for event in self._apply_in_batches(
                project["id"], user.id, consumer.result.instructions,
                project.get("currency") or DEFAULT_CURRENCY, summary,
            ):
                yield event
            await self._refresh_total(project["id"])
            await run_in_threadpool(
                self.projects.log_prompt_and_actions,
                project["id"], user.id, prompt, consumer.raw_text, summary.to_dict(),
            )
        except Exception as e:
            logger.error(f"Streamed additional prompt failed for project {project['id']}: {e}")
            yield _error_event(e)
            return

        yield CompleteEvent(
            data={"projectId": project["id"], **summary.to_dict(), "nextOffset": next_offset},
            message=f"Applied {summary.total_changes} changes to the project",
        )

    async def stream_apply_instructions(
        self,
        user,
        project_id: Any,
        instructions: Any,
        currency: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Apply caller-supplied instructions with batch progress events."""
        try:
            if not project_id or not isinstance(instructions, list) or not instructions:
                raise ValidationError("Project ID and instructions are required")
            project = await self.get_owned_project(user.id, project_id)
        except Exception as e:
            yield _error_event(e)
            return

        summary = ActionSummary()
        try:
            async for event in self._apply_in_batches(
                project["id"], user.id, [str(i) for i in instructions],
                currency or project.get("currency") or DEFAULT_CURRENCY, summary,
            ):
                yield event
            await self._refresh_total(project["id"])
        except Exception as e:
            logger.error(f"Progress application failed for project {project['id']}: {e}")
            yield _error_event(e)
            return

        yield CompleteEvent(
            data={"actionSummary": summary.to_dict()},
            message="Line item changes applied successfully",
        )

    async def stream_range_action(
        self,
        user,
        project_id: Any,
        action: Optional[str] = None,
        row_range: Any = None,
        data: Any = None,
        prompt: Optional[str] = None,
        xml_response: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Streamed range action; only the AI path without a supplied response streams tokens."""
        ai_path = not xml_response and prompt and not action
        if not ai_path:
            yield StartEvent(message="Processing range action")
            try:
                result = await self.range_action(
                    user, project_id, action, row_range, data, prompt, xml_response
                )
            except Exception as e:
                yield _error_event(e)
                return
            yield CompleteEvent(data=result, message="Range action completed")
            return

        try:
            if not project_id or row_range is None:
                raise ValidationError("Missing required fields: projectId, range, and prompt are required")
            project, items = await self._load_range(user, project_id, row_range)
        except Exception as e:
            yield _error_event(e)
            return

        change_type = detect_change_type(prompt)
        yield StartEvent(message=f"Processing {len(items)} line items ({change_type} change)")

        consumer = StreamConsumer(self.llm, self.partial_min_length)
        async for event in self._relay(consumer, build_range_prompt(items, prompt, change_type), MODE_ACTIONS):
            yield event
        if consumer.result is None:
            return
        if not consumer.result:
            yield _error_event(ValidationError("No valid actions found in the AI response"))
            return

        summary = ActionSummary()
        try:
            async for event in self._apply_in_batches(
                project["id"], user.id, normalize_actions(consumer.result, change_type),
                project.get("currency") or DEFAULT_CURRENCY, summary,
            ):
                yield event
            await self._refresh_total(project["id"])
            await run_in_threadpool(
                self.projects.log_prompt_and_actions,
                project["id"], user.id, prompt, consumer.raw_text, summary.to_dict(),
            )
            updated_items = await run_in_threadpool(self.projects.get_line_items, project["id"])
        except Exception as e:
            logger.error(f"Streamed range action failed for project {project['id']}: {e}")
            yield _error_event(e)
            return

        yield CompleteEvent(
            data={
                "prompt": prompt,
                "range": row_range,
                "actionSummary": summary.to_dict(),
                "updatedItems": updated_items,
            },
            message="Range action completed",
        )
