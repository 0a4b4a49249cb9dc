"""
Agent behavior profiles.

One profile is resolved per inbound request. It decides the instructions,
the tools the model may call and the model to use; there is one agent
implementation for every flow.
"""

from dataclasses import dataclass
from enum import StrEnum

from inbox_scheduler.config import Settings, settings
from inbox_scheduler.services.scheduling.tools import (
    ALL_TOOLS,
    CHECK_BUSY_STATUS,
    FIND_BOOKABLE_SLOTS,
)


class AgentFlow(StrEnum):
    FIRST_PARTY = "first_party"
    THIRD_PARTY = "third_party"


FIRST_PARTY_INSTRUCTIONS = """You are {assistant_name}, an AI scheduling assistant working over email for {user_name} <{user_email}>.
The user is writing to you directly. Help them manage their calendar: find free time,
check whether they are busy, send scheduling or rescheduling requests to other people,
and book a meeting once the user confirms a time. Always check availability with your
tools before proposing times. Quote times exactly as the
tools return them. Times are in {timezone} unless stated otherwise. Today is {today}.
Reply with the body of an email only, without a signature."""

THIRD_PARTY_INSTRUCTIONS = """You are {assistant_name}, an AI scheduling assistant acting on behalf of {user_name} <{user_email}>.
You are replying to someone other than {user_name}, who is trying to find a time to meet.
Only offer times that your tools report as free. Never reveal details of {user_name}'s
calendar beyond whether a time is free or busy. Times are in {timezone} unless stated
otherwise. Today is {today}. Reply with the body of an email only, without a signature."""


@dataclass(frozen=True, slots=True)
class AgentProfile:
    name: AgentFlow
    instructions: str
    tool_allowlist: tuple[str, ...]
    model: str

    def render_instructions(self, **context) -> str:
        return self.instructions.format(**context)


def resolve_agent_profile(flow: AgentFlow | str, config: Settings = settings) -> AgentProfile:
    """Profile for the first-party (owner) or third-party (counterpart) flow."""
    flow = AgentFlow(flow)
    if flow == AgentFlow.FIRST_PARTY:
        return AgentProfile(
            name=flow,
            instructions=FIRST_PARTY_INSTRUCTIONS,
            tool_allowlist=ALL_TOOLS,
            model=config.OPENAI_MODEL,
        )
    return AgentProfile(
        name=flow,
        instructions=THIRD_PARTY_INSTRUCTIONS,
        tool_allowlist=(FIND_BOOKABLE_SLOTS, CHECK_BUSY_STATUS),
        model=config.OPENAI_THIRD_PARTY_MODEL,
    )
