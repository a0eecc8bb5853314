"""Conversation templates and prompt builders."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


DEFAULT_SYSTEM = "You are a helpful assistant."


@dataclass(frozen=True)
class ConvTemplate:
    name: str
    system: str
    role0: str
    role1: str
    sep: str
    sep2: str


CONV_TEMPLATES: dict[str, ConvTemplate] = {
    "vicuna_v1.1": ConvTemplate(
        name="vicuna_v1.1",
        system=(
            "A chat between a curious user and an artificial intelligence assistant. "
            "The assistant gives helpful, detailed, and polite answers to the user's questions."
        ),
        role0="USER",
        role1="ASSISTANT",
        sep=" ",
        sep2="</s>",
    ),
    "llama-2": ConvTemplate(
        name="llama-2",
        system="<<SYS>>\n" + DEFAULT_SYSTEM + "\n<</SYS>>\n\n",
        role0="[INST]",
        role1="[/INST]",
        sep=" ",
        sep2=" </s><s>",
    ),
    "redpajama_chat": ConvTemplate(
        name="redpajama_chat",
        system="",
        role0="<human>",
        role1="<bot>",
        sep="\n",
        sep2="\n",
    ),
    "dolly": ConvTemplate(
        name="dolly",
        system=(
            "Below is an instruction that describes a task. "
            "Write a response that appropriately completes the request."
        ),
        role0="### Instruction",
        role1="### Response",
        sep="\n\n",
        sep2="### End",
    ),
}

# Roles shown when the model brings its own tokenizer chat template.
GENERIC_TEMPLATE = ConvTemplate(
    name="generic",
    system=DEFAULT_SYSTEM,
    role0="USER",
    role1="ASSISTANT",
    sep="\n",
    sep2="\n",
)


def get_template(name: str | None) -> ConvTemplate | None:
    if not name:
        return None
    return CONV_TEMPLATES.get(name)


def build_chat_messages(
    history: list[tuple[str, str]], user_message: str, system: str = DEFAULT_SYSTEM
) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system:
        messages.append({"role": "system", "content": system})
    for user, assistant in history:
        messages.append({"role": "user", "content": user})
        messages.append({"role": "assistant", "content": assistant})
    messages.append({"role": "user", "content": user_message})
    return messages


def render_with_template(template: ConvTemplate, history: list[tuple[str, str]], user_message: str) -> str:
    parts = [template.system + template.sep if template.system else ""]
    for user, assistant in history:
        parts.append(f"{template.role0}: {user}{template.sep}")
        parts.append(f"{template.role1}: {assistant}{template.sep2}")
    parts.append(f"{template.role0}: {user_message}{template.sep}")
    parts.append(f"{template.role1}:")
    return "".join(parts)


def render_prompt(
    tokenizer: Any,
    template: ConvTemplate | None,
    history: list[tuple[str, str]],
    user_message: str,
) -> str:
    if template is not None:
        return render_with_template(template, history, user_message)
    messages = build_chat_messages(history, user_message)
    if getattr(tokenizer, "chat_template", None) and hasattr(tokenizer, "apply_chat_template"):
        return tokenizer.apply_chat_template(messages, tokenize=False, add_generation_prompt=True)
    return render_with_template(GENERIC_TEMPLATE, history, user_message)


def build_padding_message(tokenizer: Any, target_tokens: int) -> str:
    """Return a user message that encodes to roughly ``target_tokens`` tokens."""
    text = "Answer with a short summary."
    pad = " lorem ipsum"
    while len(tokenizer(text)["input_ids"]) < target_tokens:
        text += pad
    return text
