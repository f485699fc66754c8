from questlog.domain.events import HOOK_EVENT_TYPES
from questlog.domain.models.sync import MessageType

CONTRACT_VERSION = "1.0.0"

COMMAND_INTENTS = (
    "request_status_change",
    "unhide_quest",
    "create_quest",
    "delete_quest",
    "set_permission",
    "update_details",
    "set_order",
    "add_task",
    "update_task",
    "toggle_task",
    "remove_task",
    "move_task",
    "add_reward",
    "update_reward",
    "toggle_reward_hidden",
    "toggle_reward_locked",
    "remove_reward",
    "set_gm_notes",
    "add_sub_quest",
    "remove_sub_quest",
    "set_primary_quest",
)

QUERY_INTENTS = (
    "get_quest",
    "get_quest_view",
    "get_classification",
    "get_counts",
)

HOOK_NAMES = tuple(event_type.hook for event_type in HOOK_EVENT_TYPES)

MESSAGE_TYPES = tuple(message_type.value for message_type in MessageType)

CONTRACT_DTO_TYPES = (
    "QuestView",
    "TaskView",
    "RewardView",
    "DeleteResult",
)
