from __future__ import annotations

import copy
import logging
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional

from questlog.application.dtos import DeleteResult, QuestView
from questlog.application.mappers.quest_view_mapper import to_quest_view
from questlog.application.services.event_bus import EventBus
from questlog.application.services.quest_store import QuestStore
from questlog.application.services.quest_sync_service import QuestSyncService
from questlog.application.services.sync_protocol import SyncTransition
from questlog.domain.errors import InvalidQuestData, InvalidTransition, PermissionDenied, UnknownQuest
from questlog.domain.events import PrimaryQuestChanged, QuestDeleted, QuestStatusChanged, QuestsClassified
from questlog.domain.models.classification import Classification
from questlog.domain.models.quest import (
    PermissionLevel,
    Quest,
    QuestDates,
    QuestPermissions,
    QuestStatus,
    Reward,
    SessionRole,
    Task,
)
from questlog.domain.models.session import PermissionPolicy, SessionRoster
from questlog.domain.models.sync import SyncMessage
from questlog.domain.repositories import QuestRepository, QuestTransport
from questlog.domain.services.classifier import classify
from questlog.domain.services.permissions import (
    FineGrainedPermissionEvaluator,
    PermissionEvaluator,
    is_personal,
)
from questlog.domain.services.quest_graph import assert_can_attach
from questlog.domain.services.status_machine import (
    TransitionRoute,
    apply_status,
    authorize_transition,
    parse_status,
    unhide,
)


def _new_id() -> str:
    return uuid.uuid4().hex


def _renumber(tasks: List[Task]) -> List[Task]:
    ordered = sorted(enumerate(tasks), key=lambda row: (row[1].order, row[0]))
    renumbered = []
    for index, (_, task) in enumerate(ordered):
        task.order = index
        renumbered.append(task)
    return renumbered


class QuestLogService:
    """Command and query surface of one connected client.

    Every command checks permissions against the local copy first and raises
    without touching the store when the caller may not perform it. Accepted
    writes go through ``QuestSyncService.commit_local`` so they are applied,
    persisted, and broadcast in that order.
    """

    def __init__(
        self,
        *,
        user_id: str,
        roster: SessionRoster,
        repository: QuestRepository,
        transport: QuestTransport,
        event_bus: EventBus | None = None,
        evaluator: PermissionEvaluator | None = None,
        policy: PermissionPolicy | None = None,
        clock: Callable[[], int] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.user_id = str(user_id)
        self.repository = repository
        self.transport = transport
        self.event_bus = event_bus or EventBus()
        if evaluator is None:
            evaluator = FineGrainedPermissionEvaluator(policy=policy or PermissionPolicy())
        elif policy is not None:
            evaluator = evaluator.with_policy(policy)
        self.store = QuestStore(self.event_bus)
        self.sync = QuestSyncService(
            client_id=self.user_id,
            store=self.store,
            transport=transport,
            repository=repository,
            event_bus=self.event_bus,
            roster=roster,
            evaluator=evaluator,
            clock=clock,
        )
        self.id_factory = id_factory or _new_id
        self.primary_quest_id: Optional[str] = None
        self._listening = False
        self._logger = logging.getLogger(__name__)
        self.register_handlers()

    @property
    def roster(self) -> SessionRoster:
        return self.sync.roster

    @property
    def evaluator(self) -> PermissionEvaluator:
        return self.sync.evaluator

    @property
    def policy(self) -> PermissionPolicy:
        return self.sync.evaluator.policy

    @property
    def role(self) -> SessionRole:
        return self.roster.role_of(self.user_id)

    def register_handlers(self) -> None:
        self.event_bus.subscribe(QuestStatusChanged, self.on_status_changed, priority=20)
        self.event_bus.subscribe(QuestDeleted, self.on_quest_deleted, priority=20)

    def on_status_changed(self, event: QuestStatusChanged) -> None:
        if event.quest_id == self.primary_quest_id and event.status != QuestStatus.ACTIVE.value:
            self._change_primary(None)

    def on_quest_deleted(self, event: QuestDeleted) -> None:
        if event.quest_id == self.primary_quest_id:
            self._change_primary(None)

    # Lifecycle

    def start(self) -> Classification:
        self.sync.reset()
        self.store.load(self.repository.load_all())
        if not self._listening:
            self.transport.on_message(self.handle_message)
            self.repository.subscribe_external_change(self.on_external_change)
            self._listening = True
        self._logger.info(
            "Quest log started",
            extra={"client_id": self.user_id, "role": self.role.value, "quest_count": len(self.store)},
        )
        return self.reclassify()

    def stop(self) -> None:
        self.transport.close()

    def update_policy(self, policy: PermissionPolicy) -> Classification:
        self.sync.evaluator = self.sync.evaluator.with_policy(policy)
        return self.reclassify()

    def update_roster(self, roster: SessionRoster) -> Classification:
        self.sync.roster = roster
        return self.reclassify()

    # Inbound

    def handle_message(self, message: SyncMessage | Mapping[str, Any]) -> Optional[SyncTransition]:
        if not isinstance(message, SyncMessage):
            try:
                message = SyncMessage.from_wire(message)
            except InvalidQuestData as exc:
                self._logger.warning("Dropped malformed sync message", extra={"error": str(exc)})
                return None

        transition = self.sync.receive(message)
        if transition.changed_ids:
            self.reclassify()
        return transition

    def on_external_change(self, quest_id: str, quest: Optional[Quest]) -> None:
        if self.sync.apply_external(quest_id, quest):
            self.reclassify()

    # Queries

    def get_quest(self, quest_id: str) -> Optional[Quest]:
        quest = self.store.get(quest_id)
        if quest is None or not self.evaluator.is_visible(quest, self.user_id, self.role):
            return None
        return quest

    def get_quest_view(self, quest_id: str) -> Optional[QuestView]:
        quest = self.get_quest(quest_id)
        if quest is None:
            return None
        is_owner = self.evaluator.is_owner(quest, self.user_id, self.role)
        can_accept = False
        if quest.status == QuestStatus.AVAILABLE:
            try:
                authorize_transition(
                    quest,
                    QuestStatus.ACTIVE,
                    user_id=self.user_id,
                    level=self.evaluator.effective_level(quest, self.user_id, self.role),
                    policy=self.policy,
                )
                can_accept = True
            except PermissionDenied:
                can_accept = False
        return to_quest_view(
            quest=quest,
            is_owner=is_owner,
            is_personal=is_personal(quest, self.roster),
            is_primary=quest.id == self.primary_quest_id,
            can_accept=can_accept,
            visible_sub_quest_ids=[sub_id for sub_id in quest.sub_quest_ids if self.get_quest(sub_id) is not None],
        )

    def get_classification(self, user_id: str | None = None) -> Classification:
        target_user = self.user_id if user_id is None else str(user_id)
        return classify(self.store.list_all(), target_user, self.roster.role_of(target_user), self.evaluator)

    def get_counts(self) -> Dict[str, int]:
        return self.get_classification().counts()

    def reclassify(self) -> Classification:
        classification = self.get_classification()
        self.event_bus.publish(QuestsClassified(user_id=self.user_id, classification=classification))
        return classification

    # Status

    def request_status_change(self, quest_id: str, new_status: QuestStatus | str) -> Optional[Quest]:
        """Apply the change locally, or route it to the request authority.

        Returns the updated quest when applied here and ``None`` when the
        change went out as a request.
        """

        quest = self._require_quest(quest_id)
        target = parse_status(quest.id, quest.status, new_status)
        route = authorize_transition(
            quest,
            target,
            user_id=self.user_id,
            level=self.evaluator.effective_level(quest, self.user_id, self.role),
            policy=self.policy,
        )
        if route == TransitionRoute.REQUEST:
            self.sync.send_status_request(quest, target)
            return None
        return self._commit(apply_status(quest, target, now_ms=self.sync.clock()))

    def unhide_quest(self, quest_id: str) -> Quest:
        quest = self._require_owner(quest_id, "unhide")
        return self._commit(unhide(quest))

    # Lifecycle of quests

    def create_quest(self, data: Mapping[str, Any] | None = None, *, parent_id: str | None = None) -> Quest:
        data = dict(data or {})
        if not self.evaluator.can_create(self.user_id, self.role):
            raise PermissionDenied(None, self.user_id, "create")

        parent_id = parent_id or data.get("parent_id")
        parent = self._require_owner(parent_id, "add a sub-quest to") if parent_id else None

        now = int(self.sync.clock())
        status, prior = self._initial_status(data.get("status"))
        permissions = QuestPermissions(default=self.policy.default_permission)
        if self.role != SessionRole.GM:
            permissions = permissions.with_level(self.user_id, PermissionLevel.OWNER)

        title = str(data.get("title") or "").strip() or "New Quest"
        quest = Quest(
            id=str(data.get("id") or self.id_factory()),
            title=title,
            status=status,
            giver_name=str(data.get("giver_name", "")),
            description=str(data.get("description", "")),
            tasks=[self._new_task(text, index) for index, text in enumerate(data.get("tasks") or [])],
            gm_notes=str(data.get("gm_notes", "")),
            permissions=permissions,
            order=int(data.get("order", 0)),
            parent_id=parent.id if parent else None,
            author_id=self.user_id,
            hidden_prior_status=prior,
            dates=QuestDates(created=now),
        )
        if quest.id in self.store:
            raise InvalidQuestData(f"Quest {quest.id} already exists")
        if status == QuestStatus.ACTIVE:
            quest.dates.started = now
        elif status in (QuestStatus.COMPLETED, QuestStatus.FAILED):
            quest.dates.started = now
            quest.dates.ended = now

        created = self._commit(quest, reclassify=parent is None)
        if parent is not None:
            parent.sub_quest_ids.append(created.id)
            self._commit(parent)
        self._logger.info(
            "Quest created",
            extra={"quest_id": created.id, "status": created.status.value, "client_id": self.user_id},
        )
        return created

    def delete_quest(self, quest_id: str) -> DeleteResult:
        """Remove a quest; its sub-quests move up to the deleted quest's parent."""

        quest = self._require_owner(quest_id, "delete")
        parent = self._require_owner(quest.parent_id, "update") if quest.parent_id else None
        children = [
            self._require_owner(child_id, "re-parent")
            for child_id in quest.sub_quest_ids
            if child_id in self.store
        ]

        saved: List[str] = []
        for child in children:
            child.parent_id = parent.id if parent else None
            self._commit(child, reclassify=False)
            saved.append(child.id)
        if parent is not None:
            parent.sub_quest_ids = [sub_id for sub_id in parent.sub_quest_ids if sub_id != quest.id]
            for child_id in saved:
                if child_id not in parent.sub_quest_ids:
                    parent.sub_quest_ids.append(child_id)
            self._commit(parent, reclassify=False)

        self.sync.commit_local_delete(quest.id)
        self.reclassify()
        self._logger.info("Quest deleted", extra={"quest_id": quest.id, "saved_ids": saved})
        return DeleteResult(deleted_id=quest.id, saved_ids=saved)

    def set_permission(self, quest_id: str, user_id: str, level: PermissionLevel | int | str) -> Quest:
        quest = self._require_owner(quest_id, "change permissions of")
        try:
            parsed = PermissionLevel.parse(level)
        except ValueError as exc:
            raise InvalidQuestData(str(exc)) from exc
        quest.permissions = quest.permissions.with_level(str(user_id), parsed)
        return self._commit(quest)

    # Details

    def update_details(
        self,
        quest_id: str,
        *,
        title: str | None = None,
        giver_name: str | None = None,
        description: str | None = None,
    ) -> Quest:
        quest = self._require_owner(quest_id, "edit")
        if title is not None:
            if not str(title).strip():
                raise InvalidQuestData("Quest title cannot be empty")
            quest.title = str(title).strip()
        if giver_name is not None:
            quest.giver_name = str(giver_name)
        if description is not None:
            quest.description = str(description)
        return self._commit(quest)

    def set_order(self, quest_id: str, order: int) -> Quest:
        quest = self._require_owner(quest_id, "reorder")
        quest.order = int(order)
        return self._commit(quest)

    # Tasks

    def add_task(self, quest_id: str, text: str, *, hidden: bool = False) -> Task:
        quest = self._require_owner(quest_id, "add a task to")
        task = self._new_task(text, len(quest.tasks))
        task.hidden = bool(hidden)
        quest.tasks.append(task)
        quest.tasks = _renumber(quest.tasks)
        self._commit(quest)
        return task

    def update_task(
        self,
        quest_id: str,
        task_id: str,
        *,
        text: str | None = None,
        completed: bool | None = None,
        failed: bool | None = None,
        hidden: bool | None = None,
    ) -> Task:
        quest = self._require_owner(quest_id, "edit a task of")
        task = self._require_task(quest, task_id)
        if text is not None:
            if not str(text).strip():
                raise InvalidQuestData("Task text cannot be empty")
            task.text = str(text).strip()
        if completed is not None:
            task.completed = bool(completed)
            if task.completed:
                task.failed = False
        if failed is not None:
            task.failed = bool(failed)
            if task.failed:
                task.completed = False
        if hidden is not None:
            task.hidden = bool(hidden)
        self._commit(quest)
        return task

    def toggle_task(self, quest_id: str, task_id: str) -> Task:
        quest = self._require_owner(quest_id, "edit a task of")
        task = self._require_task(quest, task_id)
        task.toggle()
        self._commit(quest)
        return task

    def remove_task(self, quest_id: str, task_id: str) -> Quest:
        quest = self._require_owner(quest_id, "remove a task from")
        self._require_task(quest, task_id)
        quest.tasks = _renumber([task for task in quest.tasks if task.id != task_id])
        return self._commit(quest)

    def move_task(self, quest_id: str, task_id: str, index: int) -> Quest:
        quest = self._require_owner(quest_id, "reorder tasks of")
        task = self._require_task(quest, task_id)
        ordered = [row for row in _renumber(quest.tasks) if row.id != task_id]
        index = max(0, min(int(index), len(ordered)))
        ordered.insert(index, task)
        for position, row in enumerate(ordered):
            row.order = position
        quest.tasks = ordered
        return self._commit(quest)

    # Rewards

    def add_reward(self, quest_id: str, name: str, *, hidden: bool = False, locked: bool = True) -> Reward:
        quest = self._require_owner(quest_id, "add a reward to")
        cleaned = str(name or "").strip()
        if not cleaned:
            raise InvalidQuestData("Reward name cannot be empty")
        reward = Reward(id=self.id_factory(), name=cleaned, hidden=bool(hidden), locked=bool(locked))
        quest.rewards.append(reward)
        self._commit(quest)
        return reward

    def update_reward(self, quest_id: str, reward_id: str, *, name: str) -> Reward:
        quest = self._require_owner(quest_id, "edit a reward of")
        reward = self._require_reward(quest, reward_id)
        if not str(name or "").strip():
            raise InvalidQuestData("Reward name cannot be empty")
        reward.name = str(name).strip()
        self._commit(quest)
        return reward

    def toggle_reward_hidden(self, quest_id: str, reward_id: str) -> Reward:
        quest = self._require_owner(quest_id, "hide a reward of")
        reward = self._require_reward(quest, reward_id)
        reward.hidden = not reward.hidden
        self._commit(quest)
        return reward

    def toggle_reward_locked(self, quest_id: str, reward_id: str) -> Reward:
        quest = self._require_owner(quest_id, "lock a reward of")
        reward = self._require_reward(quest, reward_id)
        reward.locked = not reward.locked
        self._commit(quest)
        return reward

    def remove_reward(self, quest_id: str, reward_id: str) -> Quest:
        quest = self._require_owner(quest_id, "remove a reward from")
        self._require_reward(quest, reward_id)
        quest.rewards = [reward for reward in quest.rewards if reward.id != reward_id]
        return self._commit(quest)

    def set_gm_notes(self, quest_id: str, notes: str) -> Quest:
        quest = self._require_owner(quest_id, "edit notes of")
        quest.gm_notes = str(notes or "")
        return self._commit(quest)

    # Sub-quests

    def add_sub_quest(self, parent_id: str, child_id: str) -> Quest:
        parent = self._require_owner(parent_id, "add a sub-quest to")
        child = self._require_owner(child_id, "re-parent")
        if child.parent_id == parent.id and child.id in parent.sub_quest_ids:
            return parent
        assert_can_attach(self.store.snapshot(), parent.id, child.id)

        previous = None
        if child.parent_id and child.parent_id != parent.id:
            previous = self._require_owner(child.parent_id, "update")

        if previous is not None:
            previous.sub_quest_ids = [sub_id for sub_id in previous.sub_quest_ids if sub_id != child.id]
            self._commit(previous, reclassify=False)
        child.parent_id = parent.id
        self._commit(child, reclassify=False)
        if child.id not in parent.sub_quest_ids:
            parent.sub_quest_ids.append(child.id)
        return self._commit(parent)

    def remove_sub_quest(self, parent_id: str, child_id: str) -> Quest:
        parent = self._require_owner(parent_id, "remove a sub-quest from")
        if child_id not in parent.sub_quest_ids:
            raise UnknownQuest(child_id)
        child = self.store.get(child_id)
        if child is not None and child.parent_id == parent.id:
            self._require_owner(child_id, "re-parent")
            child.parent_id = None
            self._commit(child, reclassify=False)
        parent.sub_quest_ids = [sub_id for sub_id in parent.sub_quest_ids if sub_id != child_id]
        return self._commit(parent)

    # Primary quest

    def set_primary_quest(self, quest_id: str | None) -> Optional[str]:
        if quest_id is not None:
            quest = self.get_quest(quest_id)
            if quest is None:
                raise UnknownQuest(quest_id)
            if quest.status != QuestStatus.ACTIVE:
                raise InvalidTransition(quest.id, quest.status.value, "primary", "only active quests can be primary")
        self._change_primary(quest_id)
        return self.primary_quest_id

    def _change_primary(self, quest_id: str | None) -> None:
        previous = self.primary_quest_id
        if previous == quest_id:
            return
        self.primary_quest_id = quest_id
        self.event_bus.publish(PrimaryQuestChanged(previous_quest_id=previous, quest_id=quest_id))

    # Helpers

    def _initial_status(self, requested: object) -> tuple[QuestStatus, Optional[QuestStatus]]:
        if self.role == SessionRole.GM and requested is not None:
            status = parse_status("", QuestStatus.HIDDEN, requested)
        elif self.role == SessionRole.PLAYER:
            status = QuestStatus.AVAILABLE
        else:
            status = QuestStatus.HIDDEN
        prior = QuestStatus.AVAILABLE if status == QuestStatus.HIDDEN else None
        return status, prior

    def _new_task(self, text: object, order: int) -> Task:
        if isinstance(text, Mapping):
            text = text.get("text", "")
        cleaned = str(text or "").strip()
        if not cleaned:
            raise InvalidQuestData("Task text cannot be empty")
        return Task(id=self.id_factory(), text=cleaned, order=int(order))

    def _require_quest(self, quest_id: str) -> Quest:
        quest = self.store.get(quest_id)
        if quest is None:
            raise UnknownQuest(quest_id)
        return quest

    def _require_owner(self, quest_id: str, action: str) -> Quest:
        quest = self._require_quest(quest_id)
        if not self.evaluator.is_owner(quest, self.user_id, self.role):
            raise PermissionDenied(quest.id, self.user_id, action)
        return quest

    @staticmethod
    def _require_task(quest: Quest, task_id: str) -> Task:
        task = quest.get_task(task_id)
        if task is None:
            raise InvalidQuestData(f"Quest {quest.id} has no task {task_id}")
        return task

    @staticmethod
    def _require_reward(quest: Quest, reward_id: str) -> Reward:
        reward = quest.get_reward(reward_id)
        if reward is None:
            raise InvalidQuestData(f"Quest {quest.id} has no reward {reward_id}")
        return reward

    def _commit(self, quest: Quest, *, reclassify: bool = True) -> Quest:
        committed = self.sync.commit_local(quest)
        if reclassify:
            self.reclassify()
        return copy.deepcopy(committed)
