"""identiq core orchestrator.

Drives one turn through the registry:

    detection payload
      -> schema validation (MalformedDetectionError -> error turn)
      -> session lookup + exclusive lock
      -> person resolution and merge, relationship linking
      -> sanitize raw text against the updated person records
      -> append sanitized turn to conversation memory
      -> project persons / token_map / pii_mapping
      -> release lock, LRU eviction

Usage:
    engine = Identiq()
    result = engine.process_turn(payload)                  # new session
    result = engine.process_turn(payload2, session_id=result.session_id)
    engine.delete_session(result.session_id)               # erasure
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .config import Settings, get_settings
from .constants import (
    ROLE_ASSISTANT,
    ROLE_USER,
    SCOPE_CONVERSATION,
    SCOPE_ONESHOT,
    STATUS_ERROR,
    STATUS_SUCCESS,
)
from .exceptions import AmbiguousPersonResolutionError, MalformedDetectionError
from .logging_utils import correlation_id, get_pii_safe_logger
from .pipeline.merger import link_persons, merge_person, normalize_value, rename_primary
from .pipeline.projector import project
from .pipeline.resolver import build_name_index, resolve_name, resolve_person
from .pipeline.tokenizer import RestoreResult, restore, sanitize
from .schemas import DetectionPayload, TurnResponse, parse_detection
from .services.session_registry import SessionRegistry, SessionState
from .types import PersonRecord, Turn

__all__ = [
    "Identiq",
    "TurnResult",
]

logger = logging.getLogger(__name__)
safe_logger = get_pii_safe_logger(__name__)


@dataclass
class TurnResult:
    """
    Outcome of one processed turn.

    `response` is the closed response object handed to the transport. The
    remaining fields are diagnostics for the caller and never part of it.
    """
    response: Dict[str, Any]
    session_id: str
    session_created: bool
    session_lost: bool = False
    evicted: List[str] = field(default_factory=list)
    # Candidate person ids of detections that were split off as new persons
    ambiguous: List[List[int]] = field(default_factory=list)
    error: Optional[MalformedDetectionError] = None
    raw_payload: Any = None

    @property
    def status(self) -> str:
        return self.response["status"]

    @property
    def ok(self) -> bool:
        return self.error is None


def _raw_text_of(payload: Any) -> str:
    """Best-effort raw text of a payload that failed validation."""
    if isinstance(payload, dict) and isinstance(payload.get("raw_text"), str):
        return payload["raw_text"]
    return ""


class Identiq:
    """
    Session & identity registry facade.

    One instance owns one SessionRegistry; pass the instance to every
    request handler instead of keeping module-level state.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[SessionRegistry] = None,
    ):
        self._settings = settings or get_settings()
        self._registry = registry or SessionRegistry(
            max_sessions=self._settings.max_sessions,
            history_window=self._settings.history_window,
            lock_timeout_seconds=self._settings.session_lock_timeout_seconds,
            idle_timeout_seconds=self._settings.idle_timeout_seconds,
        )

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def settings(self) -> Settings:
        return self._settings

    # =========================================================================
    # TURN PROCESSING
    # =========================================================================

    def process_turn(
        self,
        payload: Any,
        session_id: Optional[str] = None,
        *,
        conversational: bool = True,
        message: Optional[str] = None,
    ) -> TurnResult:
        """
        Process one detection payload for one session.

        Args:
            payload: Detection payload (dict, JSON text or DetectionPayload)
            session_id: Session to continue; None or unknown starts a new one
            conversational: Conversation mode (adds chat fields, "conv" scope)
                or single-shot mode ("oneshot" scope)
            message: Original user message; defaults to the payload raw_text

        Returns:
            TurnResult. A malformed payload yields status "error" with an
            empty-persons turn rather than an exception.

        Raises:
            SessionBusyError: the session stayed locked past the timeout
        """
        observed_at = datetime.now(timezone.utc)
        scope = SCOPE_CONVERSATION if conversational else SCOPE_ONESHOT

        error: Optional[MalformedDetectionError] = None
        detection: Optional[DetectionPayload] = None
        try:
            detection = parse_detection(payload)
        except MalformedDetectionError as e:
            error = e
            safe_logger.warning(
                "Malformed detection payload, falling back to empty turn",
                reason=str(e),
                fields=e.locations,
            )

        if message is not None:
            original_input = message
        elif detection is not None:
            original_input = detection.raw_text
        else:
            original_input = _raw_text_of(error.raw_payload)

        with correlation_id():
            with self._registry.session(session_id, scope=scope) as lookup:
                state = lookup.state
                ambiguous: List[List[int]] = []
                chat_response: Optional[str] = None

                if detection is not None:
                    ambiguous, resolutions = self._apply_detections(
                        state, detection, observed_at
                    )
                    sanitized = sanitize(detection.raw_text, state.persons, resolutions)
                    state.turn_counter += 1
                    state.memory.append(
                        Turn(ROLE_USER, sanitized, observed_at, state.turn_counter)
                    )
                    if detection.chat_response is not None:
                        chat_response = sanitize(
                            detection.chat_response, state.persons, resolutions
                        )
                        state.memory.append(
                            Turn(ROLE_ASSISTANT, chat_response, observed_at, state.turn_counter)
                        )
                    status = STATUS_SUCCESS
                else:
                    # Unvalidated text: sanitize against known persons for the
                    # response only, never retain it
                    sanitized = sanitize(original_input, state.persons)
                    status = STATUS_ERROR

                projection = project(state.persons, sanitized)
                response = TurnResponse(
                    status=status,
                    sanitized_text=projection.sanitized_text,
                    session_id=state.session_id,
                    persons=projection.persons,
                    token_map=projection.token_map,
                    pii_mapping=projection.pii_mapping,
                    original_input=original_input,
                    timestamp=observed_at.isoformat(),
                    chat_response=chat_response if conversational else None,
                    conversation_turn=state.turn_counter if conversational else None,
                    conversation_length=len(state.memory) if conversational else None,
                )

                logger.debug(
                    f"Turn {state.turn_counter} for {state.session_id}: "
                    f"{len(state.persons)} person(s), {len(projection.token_map)} token(s)"
                )

            evicted = self._registry.evict_if_over_capacity(protect=lookup.session_id)

        return TurnResult(
            response=response.to_dict(),
            session_id=lookup.session_id,
            session_created=lookup.created,
            session_lost=lookup.lost,
            evicted=evicted,
            ambiguous=ambiguous,
            error=error,
            raw_payload=payload if error is not None else None,
        )

    def _apply_detections(
        self,
        state: SessionState,
        payload: DetectionPayload,
        observed_at: datetime,
    ) -> Tuple[List[List[int]], Dict[str, int]]:
        """
        Merge every detection of a turn into the session's person records.

        Caller holds the session lock. A matched_name resolves to exactly one
        person per turn: repeats of it within the turn merge into that person.

        Returns:
            (candidate id lists of detections split off as new persons,
             {normalized matched_name: person_id} for this turn)
        """
        ambiguous: List[List[int]] = []
        resolved_by_name: Dict[str, int] = {}
        resolved: List[int] = []
        index = build_name_index(state.persons)

        for detection in payload.persons:
            name_key = normalize_value(detection.matched_name)
            person_id = resolved_by_name.get(name_key)

            if person_id is None:
                try:
                    person_id = resolve_person(detection, state.persons, index)
                except AmbiguousPersonResolutionError as e:
                    # Split rather than risk merging into the wrong person
                    logger.warning(f"{e}; creating a new person (candidates: {e.candidate_ids})")
                    ambiguous.append(e.candidate_ids)
                    person_id = None

            if person_id is None:
                person_id = state.next_person_id

            state.persons[person_id] = merge_person(
                state.persons.get(person_id),
                detection,
                person_id=person_id,
                observed_at=observed_at,
                new_turn=person_id not in resolved,
            )
            resolved_by_name[name_key] = person_id
            resolved.append(person_id)
            index = build_name_index(state.persons)

        for detection, person_id in zip(payload.persons, resolved):
            for kind, names in detection.relationships.items():
                for name in names:
                    target_id = resolve_name(name, state.persons, index)
                    if target_id is None:
                        logger.debug(f"Unresolved {kind!r} relationship target for person {person_id}")
                        continue
                    source, target = link_persons(
                        state.persons[person_id], state.persons[target_id], kind
                    )
                    state.persons[person_id] = source
                    state.persons[target_id] = target

        return ambiguous, resolved_by_name

    # =========================================================================
    # SESSION OPERATIONS
    # =========================================================================

    def delete_session(self, session_id: str) -> bool:
        """
        Erase a session (right to erasure). Idempotent, always succeeds.

        Returns:
            True if a session existed
        """
        return self._registry.delete(session_id)

    def correct_primary_name(
        self,
        session_id: str,
        person_id: int,
        new_name: str,
    ) -> PersonRecord:
        """
        Explicitly replace a person's primary name.

        Raises:
            KeyError: unknown session or person
            ValueError: blank name
        """
        with self._registry.session(session_id, create=False) as lookup:
            state = lookup.state
            if person_id not in state.persons:
                raise KeyError(person_id)
            record = rename_primary(state.persons[person_id], new_name)
            state.persons[person_id] = record
        logger.info(f"Corrected primary name of person {person_id} in {session_id}")
        return record

    def restore(self, session_id: str, text: str) -> RestoreResult:
        """
        Replace tokens in text with the session's values.

        Raises:
            KeyError: unknown session
        """
        with self._registry.session(session_id, create=False) as lookup:
            return restore(text, lookup.state.persons)

    def history(self, session_id: str) -> List[Turn]:
        """
        Retained (sanitized) history window of a session, oldest first.

        Raises:
            KeyError: unknown session
        """
        with self._registry.session(session_id, create=False) as lookup:
            return lookup.state.memory.windowed_history()

    def close(self) -> None:
        """Erase every session."""
        self._registry.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
