class QuestLogError(RuntimeError):
    pass


class PermissionDenied(QuestLogError):
    def __init__(self, quest_id: str | None, user_id: str, action: str) -> None:
        super().__init__(f"User {user_id} may not {action} quest {quest_id}")
        self.quest_id = quest_id
        self.user_id = user_id
        self.action = action


class UnknownQuest(QuestLogError):
    def __init__(self, quest_id: str) -> None:
        super().__init__(f"Unknown quest: {quest_id}")
        self.quest_id = quest_id


class RevisionGap(QuestLogError):
    def __init__(self, quest_id: str, local_revision: int, received_revision: int) -> None:
        super().__init__(
            f"Quest {quest_id} expected revision {local_revision + 1}, received {received_revision}"
        )
        self.quest_id = quest_id
        self.local_revision = local_revision
        self.received_revision = received_revision


class InvalidTransition(QuestLogError):
    def __init__(self, quest_id: str, current: str, target: str, reason: str = "") -> None:
        message = f"Quest {quest_id} cannot move from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.quest_id = quest_id
        self.current = current
        self.target = target


class CycleDetected(QuestLogError):
    def __init__(self, parent_id: str, child_id: str) -> None:
        super().__init__(f"Making {child_id} a sub-quest of {parent_id} would create a cycle")
        self.parent_id = parent_id
        self.child_id = child_id


class InvalidQuestData(QuestLogError):
    pass
