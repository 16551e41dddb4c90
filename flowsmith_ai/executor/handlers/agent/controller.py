"""RUN/SKIP controller for conversation memory search.

Before searching conversation memory the handler asks a small model whether
the new message continues the previous answer (SKIP: reuse the last exchange
directly) or introduces a new intent (RUN: search memory). Any failure or
unexpected answer means RUN.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from pydantic_ai import Agent
from pydantic_ai.models import Model

from ....server.core.config import settings

logger = logging.getLogger(__name__)

CONTROLLER_SYSTEM_PROMPT = """You are a controller that decides whether to RUN a workflow or SKIP it.

Return ONLY ONE WORD:
RUN or SKIP (uppercase only).

PRIMARY DECISION PRINCIPLE

DEFAULT TO RUN.

Return SKIP when the user intent is the SAME as the previous assistant response
and the user is asking for a transformation, reuse, or downstream application
of the same content, even if light creativity is involved.

The workflow should RUN ONLY when the user introduces a NEW INTENT.

WHAT COUNTS AS NEW INTENT -> RUN

ALWAYS RETURN RUN IF THE USER:

- Introduces a new topic, domain, industry, or subject
- Requests new information, data, or facts not already present
- Asks a new question unrelated to the previous response
- Requests validation, critique, judgment, or correctness checking
- Changes the goal, audience, or use case
- Asks to review, improve, or fix logic, prompts, or workflows
- Starts a new conversation
- Mentions a clearly different business objective
- If there is ANY doubt -> RUN

WHAT COUNTS AS SAME INTENT -> SKIP

Return SKIP ONLY IF ALL CONDITIONS ARE TRUE:

1. A previous assistant response exists
AND
2. The user refers ONLY to that response or its content
AND
3. The request is a derivative transformation or reuse of the same content

This INCLUDES:

- Formatting or restructuring (table, bullets, summary, shorter, longer)
- Clarification or explanation without adding new facts
- Creative adaptation using the same content (social posts, ads, captions, emails, landing copy)
- Applying best practices to existing content
- Channel-specific versions ("turn this into a LinkedIn post", "make this an ad")
- Simple acknowledgments

If NO new topic, NO new domain, and NO new objective is introduced -> SKIP

FINAL DECISION RULE

- False RUN is acceptable
- False SKIP is NOT acceptable
- If you are not absolutely certain -> RUN

OUTPUT FORMAT (MANDATORY):

Return ONLY:
RUN
or
SKIP"""


def build_history_context(user_input: str, assistant_output: str) -> str:
    """Format the previous exchange the way it is appended to a SKIP prompt."""
    return (
        "\n\nLast Conversation Data(this should be used for answernig FOLLOW-UP QUESTIONS)- "
        f"\nUser: {user_input}\nAssistant: {assistant_output}"
    )


class ConversationController:
    def __init__(self, model: Optional[Union[Model, str]] = None) -> None:
        self._model = model

    def _agent(self) -> Agent:
        return Agent(self._model or settings.controller.model, system_prompt=CONTROLLER_SYSTEM_PROMPT)

    async def should_run(self, history: str, user_prompt: str) -> bool:
        prompt = (
            "If the current request can be fulfilled using ONLY the information already present\n"
            f"in the conversation history, treat it as SAME INTENT.\n{history}\n\nCurrent User Input: {user_prompt}"
        )
        try:
            result = await self._agent().run(prompt, model_settings={"temperature": 0, "max_tokens": 10})
        except Exception as e:
            logger.warning("Controller decision failed, defaulting to RUN: %s", e)
            return True

        decision = str(result.output).strip().upper()
        if decision == "SKIP":
            logger.debug("Controller decided to SKIP semantic search")
            return False
        logger.debug("Controller decided to RUN semantic search (decision=%s)", decision)
        return True
