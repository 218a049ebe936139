"""Live action-item checklist.

The oracle re-derives the checklist from the running transcript on a fixed
interval; the reconciler merges each answer with local state (user toggles,
completion, "new" flags) and records a manual timeline event whenever the
user checks an item off.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import datetime

from pydantic import ValidationError

from beacon.exceptions import ItemNotFoundError, OracleTransportError
from beacon.models.action_item import ActionItem, ManualEvent, item_id_for, normalize_item_text
from beacon.services.llm import LLMClient, get_llm_client, strip_code_fence

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You maintain the live action checklist for an emergency incident
(EMS or Fire) while the crew narrates it.

You receive the full transcript so far and the current checklist as JSON.
Return ONLY a JSON object: {"items": [{"id": "...", "text": "...", "isCompleted": false}]}

Rules:
- Keep every existing item, with its id, unless it is clearly irrelevant now.
- Never drop or un-complete an item that is already completed.
- Add new items for tasks the transcript implies (e.g. "Establish water supply",
  "Obtain 12-lead ECG"). New items have no id.
- Mark an item completed only when the transcript confirms it was done
  (e.g. "fire suppression confirmed", "IV established").
- No two items may describe the same task.
- Ignore [[PAUSE HH:MM:SS]] markers except as time references."""


def clock_hhmm() -> str:
    return datetime.now().strftime("%H:%M")


def parse_action_items(raw: str, fallback: list[ActionItem]) -> list[ActionItem]:
    """Parse an oracle answer, returning ``fallback`` itself when it is unusable."""
    try:
        payload = json.loads(strip_code_fence(raw or ""))
    except json.JSONDecodeError as e:
        logger.warning("Action item response is not JSON: %s", e)
        return fallback

    if isinstance(payload, dict):
        payload = payload.get("items")
    if not isinstance(payload, list):
        logger.warning("Action item response has no item list")
        return fallback

    items: list[ActionItem] = []
    try:
        for entry in payload:
            if isinstance(entry, str):
                entry = {"text": entry}
            items.append(ActionItem.model_validate(entry))
    except ValidationError as e:
        logger.warning("Action item response has an unexpected shape: %s", e)
        return fallback
    return items


class ActionItemOracle:
    def __init__(self, client: LLMClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> LLMClient:
        return self._client or get_llm_client()

    async def suggest(self, transcript: str, current_items: list[ActionItem]) -> list[ActionItem]:
        """Ask for a refreshed checklist.

        On any transport or parse failure the ``current_items`` list object
        itself is returned, unchanged.
        """
        client = self.client
        if not client.available():
            return current_items

        current = [
            {"id": i.id, "text": i.text, "isCompleted": i.is_completed} for i in current_items
        ]
        user_content = (
            f"Current checklist:\n{json.dumps(current, indent=2)}\n\n"
            f"Transcript so far:\n{transcript}"
        )
        try:
            raw = await client.complete_text(
                system=SYSTEM_PROMPT,
                user=user_content,
                max_tokens=1024,
                tier="fast",
            )
        except OracleTransportError as e:
            logger.warning("Action item refresh skipped: %s", e)
            return current_items
        return parse_action_items(raw, current_items)


class ActionItemReconciler:
    """Holds the checklist and merges oracle answers into it.

    Refresh cycles are serialized by a lock, so results apply in completion
    order and a cycle never overlaps the previous one. A user toggle made
    while a cycle is in flight wins over that cycle's answer for the item.
    """

    def __init__(
        self,
        oracle: ActionItemOracle,
        *,
        preserve_completed: bool = True,
        clock: Callable[[], str] = clock_hhmm,
    ) -> None:
        self._oracle = oracle
        self._preserve_completed = preserve_completed
        self._clock = clock
        self._items: list[ActionItem] = []
        self._toggled: dict[str, bool] = {}
        self._events: dict[str, ManualEvent] = {}
        self._lock = asyncio.Lock()

    @property
    def items(self) -> list[ActionItem]:
        return [item.model_copy() for item in self._items]

    @property
    def manual_events(self) -> list[ManualEvent]:
        return list(self._events.values())

    def load(self, items: list[ActionItem]) -> None:
        self._items = [item.model_copy() for item in items]

    def reset(self) -> None:
        self._items = []
        self._toggled.clear()
        self._events.clear()

    def toggle(self, item_id: str) -> ManualEvent | None:
        """Flip completion for one item; completing it logs a manual timeline event."""
        for item in self._items:
            if item.id == item_id:
                break
        else:
            raise ItemNotFoundError(f"Unknown action item {item_id}")

        item.is_completed = not item.is_completed
        self._toggled[item.id] = item.is_completed
        if not item.is_completed:
            self._events.pop(item.id, None)
            return None

        event = ManualEvent(time=self._clock(), description=item.text)
        self._events[item.id] = event
        logger.info("Action item completed at %s: %s", event.time, item.text)
        return event

    async def refresh(self, transcript: str) -> bool:
        """Run one reconciliation cycle. Returns True if the checklist was replaced."""
        if not transcript.strip():
            return False

        async with self._lock:
            request = self.items
            self._toggled.clear()
            suggested = await self._oracle.suggest(transcript, request)
            # The oracle hands the request list back untouched on failure
            if suggested is request:
                return False
            self._items = self._merge(suggested)
            logger.info("Action items refreshed: %d items", len(self._items))
            return True

    def _merge(self, suggested: list[ActionItem]) -> list[ActionItem]:
        by_id = {item.id: item for item in self._items}
        by_text = {normalize_item_text(item.text): item for item in self._items}

        merged: list[ActionItem] = []
        merged_by_text: dict[str, ActionItem] = {}
        used_ids: set[str] = set()
        for candidate in suggested:
            key = normalize_item_text(candidate.text)
            if not key:
                continue
            duplicate = merged_by_text.get(key)
            if duplicate is not None:
                duplicate.is_completed = duplicate.is_completed or candidate.is_completed
                continue

            # Each prior item (and its id) carries over to at most one candidate
            prior = None
            for match in (by_id.get(candidate.id), by_text.get(key)):
                if match is not None and match.id not in used_ids:
                    prior = match
                    break
            if prior is not None:
                item_id = prior.id
            elif candidate.id not in used_ids:
                item_id = candidate.id
            else:
                item_id = item_id_for(candidate.text)
            used_ids.add(item_id)
            is_completed = candidate.is_completed
            if item_id in self._toggled:
                is_completed = self._toggled[item_id]

            item = ActionItem(
                id=item_id,
                text=candidate.text.strip(),
                is_completed=is_completed,
                is_new=prior is None,
            )
            merged.append(item)
            merged_by_text[key] = item

        if self._preserve_completed:
            kept_ids = {item.id for item in merged}
            for prior in self._items:
                key = normalize_item_text(prior.text)
                completed = prior.is_completed or self._toggled.get(prior.id, False)
                if completed and prior.id not in kept_ids and key not in merged_by_text:
                    logger.warning("Oracle dropped completed item %r; keeping it", prior.text)
                    merged.append(prior.model_copy(update={"is_new": False, "is_completed": True}))
        return merged
