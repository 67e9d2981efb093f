"""ask_human tool - the agent asks the user for missing information."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from agentflow.tools.base import Tool, ToolExecutionContext
from agentflow.utils.error_handler import ToolExecutionError

NO_ANSWER = "(no answer provided by the user)"


class AskHumanInput(BaseModel):
    """Input for the ask_human tool."""

    question: str = Field(..., description="The question to ask the user")
    context: str = Field(default="", description="Why the answer is needed (optional)")
    default: Optional[str] = Field(default=None, description="Value used when the user just presses enter")
    required: bool = Field(default=True, description="Whether an answer is required")


def _answer_text(answer: Any) -> str:
    if isinstance(answer, dict):
        answer = answer.get("answer", answer.get("text", ""))
    return "" if answer is None else str(answer)


def ask_human(args: Dict[str, Any], context: ToolExecutionContext) -> str:
    """Ask the user a question and wait for the answer.

    Use this when a task cannot continue without information only the user
    has: a confirmation, a choice, or a missing parameter. The turn pauses
    until the answer arrives; it is returned as plain text.

    Examples:
        ask_human(question="Which city should I book the hotel in?")
        # user answers: "Berlin" -> returns "Berlin"
    """
    params = AskHumanInput(**args)
    if context.interrupt is None:
        raise ToolExecutionError("ask_human needs an interactive session", tool_name="ask_human")

    answer = _answer_text(
        context.interrupt(
            {
                "type": "user_input_request",
                "question": params.question,
                "context": params.context,
                "default": params.default,
                "required": params.required,
            }
        )
    )

    if not answer and params.default:
        return params.default
    if params.required and not answer:
        return NO_ANSWER
    return answer


ask_human_tool = Tool(
    name="ask_human",
    description=(
        "Ask the user for information you are missing. Use it to confirm details, "
        "let the user choose between options, or fill in a required parameter."
    ),
    args_schema=AskHumanInput,
    execute=ask_human,
)


__all__ = ["AskHumanInput", "ask_human", "ask_human_tool", "NO_ANSWER"]
