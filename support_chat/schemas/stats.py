from pydantic import BaseModel, ConfigDict


class DashboardStatsResponse(BaseModel):
    total_conversations: int
    active_conversations: int
    waiting_conversations: int
    closed_conversations: int
    open_conversations: int
    my_conversations: int
    total_messages: int
    unread_messages: int
    today_conversations: int
    today_messages: int
    open_by_agent: dict[str, int]

    model_config = ConfigDict(from_attributes=True)
