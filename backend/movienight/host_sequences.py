"""Persisted multi-step host actions.

Setting a category winner touches several rows in separate writes. The
sequence is recorded in ``host_sequences`` before the first write and its
``completed_steps`` counter advances after each one, so an interrupted run can
be resumed and a failed run is rolled back step by step.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from .dispatcher import Dispatcher
from .errors import AppError, NotFoundError, ValidationError
from .gateway import PersistenceGateway
from .metrics import HOST_SEQUENCES_TOTAL
from .rows import HostSequenceRow

logger = logging.getLogger("movienight.host_sequences")

SET_WINNER = "set_winner"
SET_WINNER_STEPS = ("reset_nominees", "set_winner", "lock_category", "award_scores")

Step = Callable[[], Awaitable[None]]


class HostSequenceRunner:
    def __init__(self, gateway: PersistenceGateway, dispatcher: Dispatcher) -> None:
        self.gateway = gateway
        self.dispatcher = dispatcher

    async def set_winner(self, lobby_id: str, category_id: str, nominee_id: str) -> HostSequenceRow:
        category = self.gateway.category_by_id(category_id).unwrap()
        if category is None or category.lobby_id != lobby_id:
            raise NotFoundError("Category not found in this lobby")
        if all(nominee.id != nominee_id for nominee in category.nominees):
            raise ValidationError("Nominee does not belong to this category")

        snapshot = {
            "previous_winner_ids": [nominee.id for nominee in category.nominees if nominee.is_winner],
            "previous_locked": category.locked,
        }
        sequence = self.gateway.insert_host_sequence(
            lobby_id,
            SET_WINNER,
            {"category_id": category_id, "nominee_id": nominee_id},
            snapshot,
        ).unwrap()
        logger.info(
            "Host sequence started",
            extra={"event": "host_sequence_started", "sequence_id": sequence.id, "lobby_id": lobby_id},
        )
        return await self._run(sequence)

    async def resume(self, sequence_id: str) -> HostSequenceRow:
        sequence = self.gateway.host_sequence_by_id(sequence_id).unwrap()
        if sequence is None:
            raise NotFoundError("Host sequence not found")
        if sequence.status != "running":
            return sequence
        logger.info(
            "Resuming host sequence",
            extra={
                "event": "host_sequence_resumed",
                "sequence_id": sequence.id,
                "lobby_id": sequence.lobby_id,
                "status": sequence.completed_steps,
            },
        )
        return await self._run(sequence)

    async def resume_pending(self, lobby_id: str) -> list[HostSequenceRow]:
        pending = self.gateway.host_sequences_by_status(lobby_id, "running").unwrap()
        return [await self.resume(sequence.id) for sequence in pending]

    # ---------- steps ----------
    def _steps(self, sequence: HostSequenceRow) -> list[tuple[str, Step]]:
        if sequence.kind != SET_WINNER:
            raise ValidationError(f"Unknown host sequence kind: {sequence.kind}")
        category_id = sequence.params["category_id"]
        nominee_id = sequence.params["nominee_id"]

        async def reset_nominees() -> None:
            self.gateway.reset_category_winners(category_id).unwrap()

        async def set_winner() -> None:
            if self.gateway.set_nominee_winner(nominee_id, True).unwrap() is None:
                raise NotFoundError("Nominee not found")

        async def lock_category() -> None:
            if self.gateway.set_category_locked(category_id, True).unwrap() is None:
                raise NotFoundError("Category not found")

        async def award_scores() -> None:
            await self.dispatcher.update_scores(category_id, nominee_id)

        actions = {
            "reset_nominees": reset_nominees,
            "set_winner": set_winner,
            "lock_category": lock_category,
            "award_scores": award_scores,
        }
        return [(name, actions[name]) for name in SET_WINNER_STEPS]

    def _compensations(self, sequence: HostSequenceRow) -> dict[str, Callable[[], None]]:
        category_id = sequence.params["category_id"]
        nominee_id = sequence.params["nominee_id"]
        previous_winners = list(sequence.snapshot.get("previous_winner_ids", []))
        previous_locked = bool(sequence.snapshot.get("previous_locked", False))

        def restore_winners() -> None:
            for previous_id in previous_winners:
                self.gateway.set_nominee_winner(previous_id, True).unwrap()

        def unset_winner() -> None:
            if nominee_id not in previous_winners:
                self.gateway.set_nominee_winner(nominee_id, False).unwrap()

        def restore_lock() -> None:
            self.gateway.set_category_locked(category_id, previous_locked).unwrap()

        # award_scores runs in a single transaction and is the last step.
        return {
            "reset_nominees": restore_winners,
            "set_winner": unset_winner,
            "lock_category": restore_lock,
        }

    # ---------- runner ----------
    async def _run(self, sequence: HostSequenceRow) -> HostSequenceRow:
        steps = self._steps(sequence)
        for index in range(sequence.completed_steps, len(steps)):
            name, action = steps[index]
            try:
                await action()
            except AppError as exc:
                logger.warning(
                    "Host sequence step failed",
                    extra={
                        "event": "host_sequence_step_failed",
                        "sequence_id": sequence.id,
                        "lobby_id": sequence.lobby_id,
                        "reason": name,
                    },
                )
                await self._compensate(sequence, index, exc)
                raise

            # A step that ran but was not recorded stays "running" and is redone by resume().
            recorded = self.gateway.update_host_sequence(sequence.id, completed_steps=index + 1)
            if recorded.error is not None:
                logger.error(
                    "Could not record host sequence step",
                    extra={
                        "event": "host_sequence_record_failed",
                        "sequence_id": sequence.id,
                        "lobby_id": sequence.lobby_id,
                        "reason": name,
                    },
                )
                raise recorded.error
            sequence = recorded.unwrap()

        sequence = self.gateway.update_host_sequence(sequence.id, status="completed").unwrap()
        HOST_SEQUENCES_TOTAL.labels(kind=sequence.kind, status="completed").inc()
        logger.info(
            "Host sequence completed",
            extra={"event": "host_sequence_completed", "sequence_id": sequence.id, "lobby_id": sequence.lobby_id},
        )
        return sequence

    async def _compensate(self, sequence: HostSequenceRow, failed_index: int, error: AppError) -> None:
        compensations = self._compensations(sequence)
        completed = [name for name, _ in self._steps(sequence)[:failed_index]]
        status = "compensated"
        try:
            for name in reversed(completed):
                undo = compensations.get(name)
                if undo is not None:
                    undo()
        except AppError:
            status = "failed"
            logger.error(
                "Host sequence compensation failed",
                extra={"event": "host_sequence_compensation_failed", "sequence_id": sequence.id},
                exc_info=True,
            )

        result = self.gateway.update_host_sequence(
            sequence.id,
            status=status,
            completed_steps=0 if status == "compensated" else failed_index,
            error=error.message,
        )
        if result.error is not None:
            logger.error(
                "Could not record host sequence outcome",
                extra={"event": "host_sequence_record_failed", "sequence_id": sequence.id, "status": status},
            )
        HOST_SEQUENCES_TOTAL.labels(kind=sequence.kind, status=status).inc()
