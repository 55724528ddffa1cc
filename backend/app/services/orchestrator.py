"""
Import orchestrator: drives a session one item at a time.

Key flow (advance):
  1. Lowest PENDING item; none left → COMPLETED, report, post-run hooks
  2. Item already awaiting a decision → re-emit its stored prompt
  3. Otherwise resolve it (matching engine) and, when the match is
     unambiguous, apply it (item processor) and record the outcome
  4. Loop until an item needs the owner, or the session is done

The engine keeps no state between requests. Everything a restart needs
(cursor, item outcomes, the open prompt and the owner's partial answers)
is in the session and item rows, and one request is one transaction.
"""

import logging
import uuid
from collections.abc import Sequence
from typing import Any, assert_never

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import (
    ConflictError,
    ExternalServiceError,
    ImportValidationError,
    NotFoundError,
    PermissionDeniedError,
    ResolutionFailure,
)
from app.models.enums import (
    DateChoice,
    DecisionKind,
    ItemStatus,
    MatchConfidence,
    PromptKind,
    ResultReason,
    SessionStatus,
    SourceKind,
    UpdateField,
)
from app.models.imports import ImportItem, ImportSession
from app.schemas.imports import (
    CandidateOption,
    DecisionRequest,
    FailedItemSummary,
    FieldDiff,
    ImportReport,
    ImportSessionResponse,
    PlatformOption,
    PromptResponse,
    SourceDescriptor,
    StepResponse,
)
from app.services import session_manager
from app.services.catalog import CatalogService, SqlCatalogService
from app.services.hooks import PostRunHook, default_hooks, run_post_run_hooks
from app.services.igdb import MetadataSource
from app.services.item_processor import Committed, Failed, ItemProcessor, NeedsInput
from app.services.matching import (
    CachedMatch,
    CachedSkip,
    MatchingEngine,
    MatchOrigin,
    MultipleCandidates,
    NoCandidate,
    SingleCandidate,
    reason_for_origin,
)
from app.services.records import MembershipService, record_store_for
from app.services.sources import get_adapter

logger = logging.getLogger(__name__)

MATCHING_PROMPTS = (PromptKind.SELECT_CANDIDATE, PromptKind.SELECT_EXTERNAL)


class ImportEngine:
    """
    One engine for every source kind, constructed per request.

    Collaborators default to the SQL-backed implementations; tests and
    alternative deployments pass their own.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        catalog: CatalogService | None = None,
        metadata: MetadataSource | None = None,
        membership: MembershipService | None = None,
        hooks: list[PostRunHook] | None = None,
    ):
        self.db = db
        self.metadata = metadata
        self.catalog = catalog or SqlCatalogService(db, metadata)
        self.matcher = MatchingEngine(db, self.catalog, metadata)
        self.membership = membership or MembershipService(db)
        self.hooks = hooks if hooks is not None else default_hooks()

    # ─── Lifecycle ────────────────────────────────────────────

    async def start(
        self,
        owner_id: str,
        source_kind: SourceKind,
        payload: bytes | dict | list,
        *,
        filename: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> ImportSession:
        """Parse a source payload and stage a new session."""
        adapter = get_adapter(source_kind)
        rows = adapter.parse_rows(payload, filename)
        if not rows:
            raise ImportValidationError("The import contains no rows.")
        for row in rows:
            row.external_id = adapter.external_id_of(row)
            row.title = adapter.display_name_of(row)

        source_meta = {"record_kind": adapter.record_kind.value, **(meta or {})}
        if filename:
            source_meta.setdefault("file_name", filename)
        if isinstance(payload, bytes):
            source_meta.setdefault("file_size", len(payload))

        descriptor = SourceDescriptor(kind=source_kind, meta=source_meta)
        return await session_manager.create_session(self.db, owner_id, descriptor, rows)

    async def pause(self, session_id: uuid.UUID, owner_id: str) -> StepResponse:
        session = await self._owned_session(session_id, owner_id)
        session = await session_manager.set_status(self.db, session.id, SessionStatus.PAUSED)
        return await self._step(session)

    async def resume(self, session_id: uuid.UUID, owner_id: str) -> StepResponse:
        """Reactivate a paused session and serve whatever is next."""
        session = await self._owned_session(session_id, owner_id)
        await session_manager.set_status(self.db, session.id, SessionStatus.ACTIVE)
        return await self.advance(session_id, owner_id)

    async def cancel(self, session_id: uuid.UUID, owner_id: str) -> StepResponse:
        """Hard stop. Items already committed keep their outcome."""
        session = await self._owned_session(session_id, owner_id)
        session = await session_manager.set_status(self.db, session.id, SessionStatus.CANCELED)
        return await self._step(session, report=await self.report(session.id))

    async def reopen_item(self, session_id: uuid.UUID, item_id: uuid.UUID) -> ImportItem:
        item = await session_manager.get_item(self.db, item_id)
        if item.session_id != session_id:
            raise NotFoundError(f"Import item {item_id} not found in session {session_id}.")
        return await session_manager.reopen_item(self.db, item_id)

    async def report(self, session_id: uuid.UUID) -> ImportReport:
        session = await session_manager.get_session(self.db, session_id)
        counts = await session_manager.tally_counts(self.db, session_id)
        reasons = await session_manager.tally_reasons(self.db, session_id)
        failed = await session_manager.list_items(
            self.db, session_id, status=ItemStatus.FAILED, limit=session.total_count or 1,
        )
        return ImportReport(
            session_id=session.id,
            source_kind=session.source_kind,
            status=session.status,
            total_count=session.total_count,
            cursor=session.cursor,
            counts=counts,
            reasons=reasons,
            failed_items=[
                FailedItemSummary(
                    item_id=i.id,
                    row_index=i.row_index,
                    title=i.title,
                    result_reason=i.result_reason,
                    error_text=i.error_text,
                )
                for i in failed
            ],
        )

    # ─── Driving the Loop ─────────────────────────────────────

    async def advance(self, session_id: uuid.UUID, owner_id: str) -> StepResponse:
        """
        Process items until one needs the owner or none are left.

        A paused or canceled session is returned as-is; a completed one
        returns its report.
        """
        session = await self._owned_session(session_id, owner_id)
        if session.status != SessionStatus.ACTIVE:
            return await self._step(session)

        while True:
            item = await session_manager.first_pending_item(self.db, session.id)
            if item is None:
                return await self._finalize(session)

            if item.prompt_kind is not None:
                return await self._step(session, prompt=self._render_prompt(session, item))

            await session_manager.advance_cursor(self.db, session.id, item.row_index)
            prompt = await self._process(session, item)
            if prompt is not None:
                return await self._step(session, prompt=prompt)

    async def decide(
        self,
        session_id: uuid.UUID,
        item_id: uuid.UUID,
        decision: DecisionRequest,
    ) -> StepResponse:
        """
        Apply the owner's answer to the item awaiting input, then continue.

        Only accepted on an ACTIVE session, from its owner, for the item
        the session is currently waiting on. Manual id entry and skip are
        accepted at every prompt; other decisions only at their prompt.
        """
        session = await self._owned_session(session_id, decision.owner_id)
        if session.status != SessionStatus.ACTIVE:
            raise ConflictError(f"Import session is {session.status.value}; resume it first.")

        item = await session_manager.get_item(self.db, item_id)
        if item.session_id != session.id:
            raise NotFoundError(f"Import item {item_id} not found in session {session_id}.")
        current = await session_manager.first_pending_item(self.db, session.id)
        if current is None or current.id != item.id or item.prompt_kind is None:
            raise ConflictError(f"Item #{item.row_index} is not awaiting a decision.")

        prompt = await self._apply_decision(session, item, decision)
        if prompt is not None:
            return await self._step(session, prompt=prompt)
        return await self.advance(session.id, decision.owner_id)

    # ─── Internals ────────────────────────────────────────────

    async def _owned_session(self, session_id: uuid.UUID, owner_id: str) -> ImportSession:
        session = await session_manager.get_session(self.db, session_id)
        if session.owner_id != owner_id:
            raise PermissionDeniedError("Only the member who started this import can drive it.")
        return session

    async def _step(
        self,
        session: ImportSession,
        *,
        prompt: PromptResponse | None = None,
        report: ImportReport | None = None,
    ) -> StepResponse:
        await self.db.refresh(session)
        if prompt is not None:
            state = "prompt"
        elif session.status == SessionStatus.COMPLETED:
            state = "finished"
            report = report or await self.report(session.id)
        elif session.status == SessionStatus.CANCELED:
            state = "canceled"
        else:
            state = "paused"
        return StepResponse(
            state=state,
            session=ImportSessionResponse.model_validate(session),
            prompt=prompt,
            report=report,
        )

    async def _finalize(self, session: ImportSession) -> StepResponse:
        session = await session_manager.set_status(self.db, session.id, SessionStatus.COMPLETED)
        report = await self.report(session.id)
        logger.info(
            "Import session %s completed: %s",
            session.id, report.counts.model_dump(),
        )
        await run_post_run_hooks(report, self.hooks)
        return await self._step(session, report=report)

    def _processor(self, session: ImportSession) -> ItemProcessor:
        adapter = get_adapter(session.source_kind)
        store = record_store_for(adapter.record_kind, self.db)
        return ItemProcessor(self.db, store, self.catalog, self.membership)

    async def _fail(self, item: ImportItem, reason: ResultReason, error_text: str) -> None:
        await session_manager.record_outcome(self.db, item, ItemStatus.FAILED, reason, error_text=error_text)

    async def _process(self, session: ImportSession, item: ImportItem) -> PromptResponse | None:
        """Resolve and apply one fresh PENDING item; returns a prompt if it needs the owner."""
        validation_error = (item.raw_fields or {}).get("validation_error")
        if validation_error:
            await self._fail(item, ResultReason.INVALID_ROW, validation_error)
            return None

        try:
            outcome = await self.matcher.resolve(item, session.source_kind, session.owner_id)
        except (ImportValidationError, ResolutionFailure) as e:
            await self._fail(item, ResultReason(e.reason), str(e))
            return None
        except NotFoundError as e:
            await self._fail(item, ResultReason.INVALID_REMAP, str(e))
            return None
        except ExternalServiceError as e:
            logger.warning("Metadata import for row %d failed: %s", item.row_index, e)
            return await self._suspend(
                session, item, PromptKind.SELECT_EXTERNAL,
                message="The game database is unavailable. Enter a game id or skip.",
            )

        match outcome:
            case CachedMatch(game_id=game_id):
                return await self._apply(
                    session, item, game_id, MatchConfidence.EXACT, ResultReason.AUTO_MATCH,
                )
            case CachedSkip():
                await session_manager.record_outcome(
                    self.db, item, ItemStatus.SKIPPED, ResultReason.SKIP_MAPPED,
                )
                return None
            case SingleCandidate(game_id=game_id, origin=origin, confidence=confidence):
                if origin == MatchOrigin.HISTORICAL and not settings.AUTO_APPLY_HISTORICAL_MATCH:
                    game = await self.catalog.find_by_id(game_id)
                    options = [CandidateOption(
                        game_id=game_id,
                        title=game.title if game else f"Game {game_id}",
                        release_year=game.release_year if game else None,
                    )]
                    return await self._suspend(
                        session, item, PromptKind.SELECT_CANDIDATE,
                        candidates=options, origin=origin,
                        message="Other members matched this title to the game below. Is it right?",
                    )
                if origin == MatchOrigin.TITLE:
                    await self.matcher.remember(session.source_kind, item.external_id, game_id, session.owner_id)
                return await self._apply(
                    session, item, game_id, confidence, reason_for_origin(origin, confidence),
                )
            case MultipleCandidates(candidates=candidates, origin=origin):
                return await self._suspend(
                    session, item, PromptKind.SELECT_CANDIDATE,
                    candidates=candidates, origin=origin,
                    message=f"Several catalog games match {item.title!r}. Pick one.",
                )
            case NoCandidate():
                return await self._offer_external(session, item, item.title, fail_when_empty=True)
            case _:
                assert_never(outcome)

    async def _offer_external(
        self,
        session: ImportSession,
        item: ImportItem,
        query: str,
        *,
        fail_when_empty: bool,
    ) -> PromptResponse | None:
        try:
            candidates = await self.matcher.search_external(query)
        except ExternalServiceError as e:
            logger.warning("External search for %r failed: %s", query, e)
            return await self._suspend(
                session, item, PromptKind.SELECT_EXTERNAL,
                message="The game database search is unavailable. Enter a game id or skip.",
            )

        if not candidates and fail_when_empty:
            await self._fail(item, ResultReason.NO_CANDIDATE, f"No match found for {item.title!r}.")
            return None
        return await self._suspend(
            session, item, PromptKind.SELECT_EXTERNAL,
            candidates=candidates,
            message=None if candidates else f"No results for {query!r}. Try another search, enter an id or skip.",
        )

    async def _apply(
        self,
        session: ImportSession,
        item: ImportItem,
        game_id: int,
        confidence: MatchConfidence,
        reason: ResultReason,
        chosen_fields: list[UpdateField] | None = None,
    ) -> PromptResponse | None:
        result = await self._processor(session).apply(
            item, game_id, session.owner_id, reason, chosen_fields=chosen_fields,
        )
        match result:
            case Committed(status=status, reason=committed_reason, record_id=record_id):
                await session_manager.record_outcome(
                    self.db, item, status, committed_reason,
                    game_id=game_id, record_id=record_id, confidence=confidence,
                )
                return None
            case Failed(reason=failed_reason, error_text=error_text):
                await session_manager.record_outcome(
                    self.db, item, ItemStatus.FAILED, failed_reason,
                    game_id=game_id, confidence=confidence, error_text=error_text,
                )
                return None
            case NeedsInput(prompt_kind=prompt_kind, platforms=platforms, update_fields=fields, message=message):
                item.resolved_game_id = game_id
                item.match_confidence = confidence
                return await self._suspend(
                    session, item, prompt_kind,
                    platforms=platforms, update_fields=fields, message=message, match_reason=reason,
                )
            case _:
                assert_never(result)

    async def _suspend(
        self,
        session: ImportSession,
        item: ImportItem,
        prompt_kind: PromptKind,
        *,
        candidates: Sequence[CandidateOption] = (),
        platforms: Sequence[PlatformOption] = (),
        update_fields: Sequence[FieldDiff] = (),
        message: str | None = None,
        origin: MatchOrigin | None = None,
        match_reason: ResultReason | None = None,
    ) -> PromptResponse:
        """Persist the prompt on the item so any later request can re-render it."""
        item.prompt_kind = prompt_kind
        item.candidate_snapshot = {
            "candidates": [c.model_dump(mode="json") for c in candidates],
            "platforms": [p.model_dump(mode="json") for p in platforms],
            "update_fields": [f.model_dump(mode="json") for f in update_fields],
            "message": message,
            "origin": origin.value if origin else None,
            "match_reason": match_reason.value if match_reason else None,
        }
        await self.db.flush()
        logger.info("Import item #%d %r awaits %s", item.row_index, item.title, prompt_kind.value)
        return self._render_prompt(session, item)

    def _render_prompt(self, session: ImportSession, item: ImportItem) -> PromptResponse:
        snapshot = item.candidate_snapshot or {}
        return PromptResponse(
            session_id=session.id,
            item_id=item.id,
            row_index=item.row_index,
            title=item.title,
            prompt_kind=item.prompt_kind,
            candidates=snapshot.get("candidates") or [],
            platforms=snapshot.get("platforms") or [],
            update_fields=snapshot.get("update_fields") or [],
            message=snapshot.get("message"),
        )

    def _pending_match_reason(self, item: ImportItem) -> ResultReason:
        stored = (item.candidate_snapshot or {}).get("match_reason")
        if stored:
            return ResultReason(stored)
        return reason_for_origin(MatchOrigin.SEARCH, item.match_confidence or MatchConfidence.MANUAL)

    async def _apply_decision(
        self,
        session: ImportSession,
        item: ImportItem,
        decision: DecisionRequest,
    ) -> PromptResponse | None:
        prompt_kind = item.prompt_kind
        snapshot = item.candidate_snapshot or {}

        def require_prompt(*allowed: PromptKind) -> None:
            if prompt_kind not in allowed:
                raise ConflictError(
                    f"{decision.kind.value} does not answer a {prompt_kind.value} prompt."
                )

        match decision.kind:
            case DecisionKind.SKIP:
                if prompt_kind in MATCHING_PROMPTS:
                    await self.matcher.remember(session.source_kind, item.external_id, None, session.owner_id)
                await session_manager.record_outcome(
                    self.db, item, ItemStatus.SKIPPED, ResultReason.MANUAL_SKIP,
                )
                return None

            case DecisionKind.ENTER_GAME_ID:
                if decision.game_id is None:
                    raise ImportValidationError("game_id is required.", reason=ResultReason.INVALID_REMAP.value)
                game = await self.catalog.find_by_id(decision.game_id)
                if game is None:
                    await self._fail(
                        item, ResultReason.INVALID_REMAP,
                        f"Catalog game {decision.game_id} does not exist.",
                    )
                    return None
                return await self._apply_manual_pick(session, item, game.id)

            case DecisionKind.PICK_GAME:
                require_prompt(PromptKind.SELECT_CANDIDATE)
                offered = {c.get("game_id") for c in snapshot.get("candidates", [])}
                if decision.game_id is None or decision.game_id not in offered:
                    raise ImportValidationError("Pick one of the offered games.")
                return await self._apply_manual_pick(session, item, decision.game_id)

            case DecisionKind.SEARCH_EXTERNAL:
                require_prompt(*MATCHING_PROMPTS)
                query = (decision.query or item.title).strip()
                return await self._offer_external(session, item, query, fail_when_empty=False)

            case DecisionKind.PICK_EXTERNAL:
                require_prompt(PromptKind.SELECT_EXTERNAL)
                if decision.metadata_id is None:
                    raise ImportValidationError("metadata_id is required.")
                try:
                    game = await self.matcher.import_from_external(decision.metadata_id)
                except NotFoundError as e:
                    await self._fail(item, ResultReason.INVALID_REMAP, str(e))
                    return None
                return await self._apply_manual_pick(session, item, game.id)

            case DecisionKind.PICK_PLATFORM:
                require_prompt(PromptKind.SELECT_PLATFORM)
                offered = {p.get("platform_id") for p in snapshot.get("platforms", [])}
                if not decision.other_platform and decision.platform_id not in offered:
                    raise ImportValidationError("Pick one of the offered platforms or 'other'.")
                if decision.date_choice == DateChoice.CUSTOM and decision.custom_date is None:
                    raise ImportValidationError("custom_date is required for a custom date.")
                item.draft_other_platform = decision.other_platform
                item.draft_platform_id = None if decision.other_platform else decision.platform_id
                if decision.completion_type:
                    item.draft_completion_type = decision.completion_type
                if decision.date_choice is not None:
                    item.draft_date_choice = decision.date_choice
                    item.draft_custom_date = decision.custom_date
                return await self._resume_apply(session, item)

            case DecisionKind.CONFIRM_SAME:
                require_prompt(PromptKind.CONFIRM_SAME_RECORD)
                if decision.same_record is None:
                    raise ImportValidationError("same_record is required.")
                item.draft_same_record = decision.same_record
                return await self._resume_apply(session, item)

            case DecisionKind.UPDATE_FIELDS:
                require_prompt(PromptKind.SELECT_UPDATE_FIELDS)
                return await self._resume_apply(session, item, chosen_fields=list(decision.fields))

            case _:
                assert_never(decision.kind)

    async def _apply_manual_pick(
        self,
        session: ImportSession,
        item: ImportItem,
        game_id: int,
    ) -> PromptResponse | None:
        """A human-chosen game: remember it for everyone, then apply it."""
        await self.matcher.remember(session.source_kind, item.external_id, game_id, session.owner_id)
        if item.resolved_game_id != game_id:
            session_manager.clear_draft(item)
            item.resolved_game_id = None
        item.prompt_kind = None
        return await self._apply(
            session, item, game_id, MatchConfidence.MANUAL, ResultReason.MANUAL_REMAP,
        )

    async def _resume_apply(
        self,
        session: ImportSession,
        item: ImportItem,
        chosen_fields: list[UpdateField] | None = None,
    ) -> PromptResponse | None:
        """Re-run the item processor for an item whose game is already resolved."""
        if item.resolved_game_id is None:
            raise ConflictError(f"Item #{item.row_index} has no resolved game.")
        item.prompt_kind = None
        return await self._apply(
            session, item, item.resolved_game_id,
            item.match_confidence or MatchConfidence.MANUAL,
            self._pending_match_reason(item),
            chosen_fields=chosen_fields,
        )
